REDIS_META_KEY = "room:meta:{slug}" # room id - room metadata hash
REDIS_PARTICIPANTS_KEY = "room:participants:{slug}" # room id - set of user identities
REDIS_MESSAGES_KEY = "room:messages:{slug}" # room id - list of message JSON blobs, commit order
REDIS_USER_ROOMS_KEY = "user:rooms:{identity}" # user identity - set of room ids

# **Example `room:meta:{id}` hash fields**
# - `id` = `{roomId}`
# - `name` = display name
# - `created_by` = identity of the creator
# - `created_at` = ISO timestamp
#
# `room:messages:{id}` is append-only (RPUSH). List order is the commit order
# that live broadcasts follow, so LRANGE 0 -1 is the room's history.

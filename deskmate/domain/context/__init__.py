# Session context for the turn pipeline

# +---------------------+
# |   Document store    |   (Authoritative, per user)
# |---------------------|
# | users/{uid}/sessions|
# | recent messages     |
# | counts, context map |
# +---------------------+
#           |
#           v
# +---------------------+
# |    SessionCache     |   (In-process, mirrors successful writes)
# |---------------------|
# | key: user:session   |
# | last access time    |
# +---------------------+
#           |
#           v
# +------------------------------+
# |      Turn prompt context     |   (Assembled per message)
# |------------------------------|
# | last N messages              |
# | open tasks / meetings counts |
# | free-form context map        |
# | current time in user tz      |
# +------------------------------+

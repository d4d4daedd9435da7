# KEYS[1] code key; ARGV: serialized record, used flag ("0"/"1"), ttl seconds.
# Returns 1 when created, 0 when the key already exists.
CREATE_AUTHORIZATION_CODE = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
redis.call('HSET', KEYS[1], 'data', ARGV[1], 'used', ARGV[2])
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[3]))
return 1
"""

# KEYS[1] code key. Returns -1 when missing, 0 when already used, 1 when marked.
# HSET on an existing hash keeps its TTL.
MARK_AUTHORIZATION_CODE_USED = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return -1
end
if redis.call('HGET', KEYS[1], 'used') == '1' then
  return 0
end
redis.call('HSET', KEYS[1], 'used', '1')
return 1
"""

"""Redis Lua scripts for fixed-window counters.

The script resets and increments in one atomic step so concurrent
instances never lose an increment or observe a half-reset window.
"""

# KEYS[1] = counter hash key
# ARGV[1] = now in milliseconds
# ARGV[2] = window size in milliseconds
# Returns {count, window_start_ms}
INCREMENT_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])

    local start = tonumber(redis.call('HGET', key, 'start'))
    if start == nil or now - start >= window then
        -- First access or window elapsed: start a new window at now
        redis.call('HSET', key, 'start', now, 'count', 1)
        redis.call('PEXPIRE', key, window * 2)
        return {1, now}
    end

    local count = redis.call('HINCRBY', key, 'count', 1)
    return {count, start}
"""

import contextlib
import datetime

import humanize

from base_bot import ClientError, log
from configurations import CONFIG


class KeyedLock:
    """Non-blocking lock per key, e.g. one running quiz game per guild."""

    def __init__(self):
        self._held = set()

    def locked(self, key):
        return key in self._held

    def acquire(self, key):
        if key in self._held:
            return False
        self._held.add(key)
        return True

    def release(self, key):
        self._held.discard(key)

    @contextlib.contextmanager
    def hold(self, key, message):
        if not self.acquire(key):
            raise ClientError(message)
        try:
            yield
        finally:
            self.release(key)


class Cooldowns:
    def __init__(self, global_seconds=None, max_parallel=None):
        self.global_seconds = global_seconds or CONFIG.get('global_cooldown_seconds', 60)
        self.max_parallel = max_parallel or CONFIG.get('max_parallel_cooldowns', 3)
        self._global = {}
        self._commands = {}

    def _expire(self, user_id, now):
        if user_id in self._global and self._global[user_id] <= now:
            del self._global[user_id]
        commands = self._commands.get(user_id, {})
        for command in [c for c, until in commands.items() if until <= now]:
            del commands[command]
        if not commands:
            self._commands.pop(user_id, None)

    def check_global(self, user_id, now=None):
        now = now or datetime.datetime.utcnow()
        self._expire(user_id, now)
        if user_id in self._global:
            remaining = humanize.naturaldelta(self._global[user_id] - now)
            raise ClientError(f'You currently have a global cooldown. The cooldown ends in {remaining}...')

    def set_global(self, user_id, seconds, now=None):
        now = now or datetime.datetime.utcnow()
        self._global[user_id] = now + datetime.timedelta(seconds=seconds)

    def check(self, user_id, command, seconds, now=None):
        """
        Raise for a running global or command cooldown, otherwise start the command's cooldown.
        A user juggling too many command cooldowns at once gets a global cooldown instead.
        """
        now = now or datetime.datetime.utcnow()
        self.check_global(user_id, now)
        commands = self._commands.get(user_id, {})
        if command in commands:
            remaining = humanize.naturaldelta(commands[command] - now)
            raise ClientError(f'You currently have a cooldown for this command. The cooldown ends in {remaining}...')
        if len(commands) > self.max_parallel:
            log.debug(f'User {user_id} has {len(commands)} parallel cooldowns, applying global cooldown.')
            self.set_global(user_id, self.global_seconds, now)
        elif seconds:
            self._commands.setdefault(user_id, {})[command] = now + datetime.timedelta(seconds=seconds)

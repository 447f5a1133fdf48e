from typing import Dict, List


class ConnectionRegistry:
    """Counts open realtime connections per user.

    A user is online while their count is above zero. Every mutation runs
    synchronously inside a single event-loop turn, so concurrent connects and
    disconnects cannot lose updates as long as the process has one loop.
    """

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def increment(self, user_id) -> int:
        key = str(user_id)
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count
        return count

    def decrement(self, user_id) -> int:
        key = str(user_id)
        count = max(0, self._counts.get(key, 0) - 1)
        if count == 0:
            self._counts.pop(key, None)
        else:
            self._counts[key] = count
        return count

    def count(self, user_id) -> int:
        return self._counts.get(str(user_id), 0)

    def is_online(self, user_id) -> bool:
        return self.count(user_id) > 0

    def online_user_ids(self) -> List[str]:
        return list(self._counts.keys())

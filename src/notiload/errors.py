from __future__ import annotations


class LoadTestError(Exception):
    pass


class PoolConnectionError(LoadTestError, ConnectionError):
    pass


class NoCapacityError(LoadTestError):
    pass


class OperationTimeoutError(LoadTestError, TimeoutError):
    pass


class ProtocolError(LoadTestError):
    pass

"""Error taxonomy shared by the proxy and the launcher"""


class PortlessError(Exception):
    """Base class for errors reported to the user by the CLIs"""

    exit_code = 1


class NoFreePort(PortlessError):
    """No port in the requested range could be bound"""

    def __init__(self, start: int, end: int):
        super().__init__(f"No free ports found in range {start}-{end}")
        self.start = start
        self.end = end


class NamespaceNotFound(PortlessError):
    """The namespace has no port file, or the file is unreadable"""

    def __init__(self, namespace: str):
        super().__init__(f'No proxy found for namespace "{namespace}".')
        self.namespace = namespace


class ProxyUnreachable(PortlessError):
    def __init__(self, url: str, reason: str | None = None):
        message = f"Proxy is not reachable at {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.url = url


class ConfigMissing(PortlessError):
    def __init__(self, path):
        super().__init__(f"No {path.name} found in {path.parent}.")
        self.path = path


class ConfigAlreadyExists(PortlessError):
    def __init__(self, path):
        super().__init__(f"{path.name} already exists in {path.parent}.")
        self.path = path


class ConfigInvalid(PortlessError):
    """Config file could not be parsed or failed validation"""

    def __init__(self, path, errors: list[str]):
        super().__init__(f"Invalid {path.name}: " + "; ".join(errors))
        self.path = path
        self.errors = errors


class UnknownService(PortlessError):
    def __init__(self, name: str, available: list[str]):
        super().__init__(f'Unknown service: "{name}"')
        self.name = name
        self.available = available

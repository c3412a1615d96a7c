class StashException(Exception):
    pass


class IntegrityException(StashException):
    pass


class UserExistsException(IntegrityException):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Username '{username}' is already in use.")


class NotFoundException(StashException):
    pass


class LockUnavailableException(StashException):
    pass


class StoreUnreadableException(StashException):
    pass


class PasswordSetException(StashException):
    def __init__(self, user_id: int, reason: str) -> None:
        self.user_id = user_id
        super().__init__(f"Unable to set password for user id {user_id}: {reason}")


class AuthenticationException(StashException):
    pass


class AuthorizationException(StashException):
    pass


class StoreUnwritableException(StashException):
    pass


class ConfigurationException(StashException):
    pass

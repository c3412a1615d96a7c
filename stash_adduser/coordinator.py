from __future__ import annotations

import logging
from typing import Callable

from stash_adduser.config import Settings
from stash_adduser.outcome import (
    Backend,
    Conflict,
    Created,
    ErrorKind,
    Failed,
    Outcome,
    ProvisionRequest,
)
from stash_adduser.provisioners import LocalProvisioner, Provisioner, RemoteProvisioner

logger = logging.getLogger(__name__)

ProvisionerFactory = Callable[[ProvisionRequest, Settings], Provisioner]


def _local_factory(request: ProvisionRequest, settings: Settings) -> Provisioner:
    return LocalProvisioner(request.directory, settings=settings)


def _remote_factory(request: ProvisionRequest, settings: Settings) -> Provisioner:
    return RemoteProvisioner(
        request.host,
        request.admin_username,
        request.admin_password,
        settings=settings,
    )


def validate_request(request: ProvisionRequest) -> str | None:
    """Return why ``request`` cannot be dispatched, or None when it can."""
    if not request.username or not request.username.strip():
        return "missing required parameter: username"
    if request.directory and request.host:
        return "cannot specify both a directory and a host"
    if not request.directory and not request.host:
        return "missing required option, either a directory or a host"
    if request.backend is Backend.LOCAL:
        if not request.directory:
            return "local backend selected without a directory"
    elif request.backend is Backend.REMOTE:
        if not request.host:
            return "remote backend selected without a host"
        if not request.admin_username or request.admin_password is None:
            return "remote backend requires admin username and password"
    else:
        return "no backend selected"
    return None


class ProvisioningCoordinator:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        local_factory: ProvisionerFactory | None = None,
        remote_factory: ProvisionerFactory | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._factories = {
            Backend.LOCAL: local_factory or _local_factory,
            Backend.REMOTE: remote_factory or _remote_factory,
        }

    def provision(self, request: ProvisionRequest) -> Outcome:
        problem = validate_request(request)
        if problem is not None:
            logger.warning("Rejected provisioning request: %s", problem)
            return Failed(kind=ErrorKind.INVALID_REQUEST, message=problem)

        provisioner = self._factories[request.backend](request, self.settings)
        logger.debug("Provisioning '%s' via %s backend", request.username, request.backend.value)
        outcome = provisioner.provision(request.username, request.password, is_admin=request.is_admin)
        self._report(request, outcome)
        return outcome

    def _report(self, request: ProvisionRequest, outcome: Outcome) -> None:
        level = logging.INFO if self.settings.verbose else logging.DEBUG
        if isinstance(outcome, Created):
            logger.log(level, "Username '%s' created with id %s", outcome.username, outcome.user_id)
        elif isinstance(outcome, Conflict):
            logger.log(level, "Username '%s' is already in use", outcome.username)
        else:
            logger.log(
                level,
                "Provisioning '%s' failed (%s): %s",
                request.username,
                outcome.kind.value,
                outcome.message,
            )


def provision(request: ProvisionRequest, settings: Settings | None = None) -> Outcome:
    return ProvisioningCoordinator(settings).provision(request)

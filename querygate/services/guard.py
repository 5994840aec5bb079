"""Request-time enforcement of blueprint rules on query bodies."""

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from querygate.config import settings
from querygate.core.exceptions import ConfigNotFoundError, MalformedFilterError, NotFoundError
from querygate.services.blueprint import Blueprint, BlueprintRegistry
from querygate.services.config_resolver import ConfigResolver
from querygate.services.filter_validator import ValidatedQuery, validate

logger = logging.getLogger(__name__)

QUERY_BODY_KEYS = ("filter", "select", "sort")


def has_query_body(body: Mapping[str, Any] | None) -> bool:
    return body is not None and any(body.get(k) is not None for k in QUERY_BODY_KEYS)


class QueryGuard:
    """Validate a caller's filter/select/sort against the blueprint for an operation.

    The blueprint comes from the registry and is narrowed first by the system
    default configuration, then by the caller's own override. An override can
    only restrict further; it never lifts a system restriction. Unregistered
    keys are rejected unless the guard is configured to fail open.
    """

    def __init__(
        self,
        registry: BlueprintRegistry,
        resolver: ConfigResolver,
        *,
        max_nodes: int | None = None,
        fail_open: bool | None = None,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.max_nodes = settings.QUERY_MAX_FILTER_NODES if max_nodes is None else max_nodes
        self.fail_open = settings.QUERY_GUARD_FAIL_OPEN if fail_open is None else fail_open

    async def effective_blueprint(
        self, blueprint_key: str, caller_id: uuid.UUID | None
    ) -> Blueprint:
        """Return the registered blueprint narrowed by every policy that applies to the caller."""
        blueprint = self.registry.lookup(blueprint_key)
        owners = (None,) if caller_id is None else (None, caller_id)
        for owner in owners:
            policy = await self._policy(blueprint_key, owner)
            if policy is not None:
                blueprint = blueprint.narrow(policy)
        return blueprint

    async def _policy(
        self, blueprint_key: str, owner: uuid.UUID | None
    ) -> Mapping[str, Any] | None:
        # With no override of its own, the caller resolves to the system
        # default again; narrowing is idempotent so that is harmless.
        try:
            policy = await self.resolver.resolve(blueprint_key, owner)
        except ConfigNotFoundError:
            logger.debug("No stored configuration for %s; using registered blueprint", blueprint_key)
            return None
        return policy if isinstance(policy, Mapping) else None

    async def enforce(
        self,
        blueprint_key: str,
        caller_id: uuid.UUID | None,
        body: Mapping[str, Any] | None,
    ) -> ValidatedQuery | None:
        """Return the ValidatedQuery for ``body``, or None when there is nothing to enforce.

        Validation errors propagate unchanged.
        """
        if blueprint_key not in self.registry:
            if self.fail_open:
                logger.warning(
                    "No blueprint registered for %s; permitting request unvalidated",
                    blueprint_key,
                )
                return None
            raise NotFoundError(
                f"Blueprint '{blueprint_key}' is not registered.",
                blueprint=blueprint_key,
            )

        if body is not None and not isinstance(body, Mapping):
            raise MalformedFilterError("Query body must be a JSON object.")
        if not has_query_body(body):
            return None

        blueprint = await self.effective_blueprint(blueprint_key, caller_id)
        return validate(
            blueprint,
            body.get("filter"),
            body.get("select"),
            body.get("sort"),
            max_nodes=self.max_nodes,
        )

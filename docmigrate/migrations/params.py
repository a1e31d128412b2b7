"""
Resolution of change unit parameters by declared type.
"""

import inspect
from typing import Any, Callable, Mapping, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from docmigrate.core.exceptions import ChangeSetError
from docmigrate.log.logging import logger


def _type_name(annotation: Any) -> str:
    if annotation is inspect.Parameter.empty:
        return "<missing annotation>"
    return getattr(annotation, "__name__", repr(annotation))


class ParameterResolver:
    """
    Supplies arguments to a change unit body from a fixed table of types.

    The table always maps AsyncIOMotorDatabase to the live database handle.
    Caller supplied singletons are layered on top, keyed by type. Each
    parameter of the body must carry a type annotation found in the table
    or a default value.
    """

    def __init__(self, db: AsyncIOMotorDatabase, params: Optional[Mapping[Any, Any]] = None):
        self._table: dict[Any, Any] = {AsyncIOMotorDatabase: db}
        if params:
            self._table.update(params)

    @property
    def supported_types(self) -> list[Any]:
        return list(self._table)

    def resolve(self, body: Callable[..., Any]) -> dict[str, Any]:
        """
        Build keyword arguments for ``body``.

        Args:
            body: The change unit callable.

        Returns:
            Mapping of parameter name to resolved value.

        Raises:
            ChangeSetError: If a parameter type is not in the table.
        """
        body_name = getattr(body, "__qualname__", repr(body))
        # Works for functions, partials and callable objects alike. Bound
        # and partially applied parameters are already left out.
        try:
            signature = inspect.signature(body, eval_str=True)
        except Exception as e:
            raise ChangeSetError(
                f"Change set {body_name} has unresolvable type annotations: {e}"
            ) from e

        kwargs: dict[str, Any] = {}
        for name, param in signature.parameters.items():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue

            annotation = param.annotation
            try:
                supported = annotation in self._table
            except TypeError:
                supported = False

            if supported:
                kwargs[name] = self._table[annotation]
            elif param.default is not inspect.Parameter.empty:
                continue
            else:
                raise ChangeSetError(
                    f"Change set {body_name} has wrong arguments list. "
                    f"Unsupported type: {_type_name(annotation)}"
                )

        if kwargs:
            logger.debug(
                "Change set {body} called with arguments: {types}",
                body=body_name,
                types=", ".join(type(v).__name__ for v in kwargs.values()),
                event_type="change_params_resolved",
            )
        return kwargs

"""
Lifecycle callbacks for documents.

Each document type owns a registry of named events (save, destroy, and any
event a mixin defines, such as restore). Handlers run synchronously in the
order they were registered: all "before" handlers, then the operation, then
all "after" handlers. A handler that raises aborts the rest of the chain and
the exception propagates to the caller.
"""

from typing import Any, Callable, Dict, List, TypeVar

from .exceptions import UnknownCallbackEvent

F = TypeVar("F", bound=Callable[..., Any])

Handler = Callable[[Any], Any]

CALLBACK_KINDS = ("before", "after")


class CallbackChain:
    """Ordered before/after handlers for one event."""

    def __init__(self) -> None:
        self.before: List[Handler] = []
        self.after: List[Handler] = []

    def copy(self) -> "CallbackChain":
        chain = CallbackChain()
        chain.before = list(self.before)
        chain.after = list(self.after)
        return chain


class CallbackRegistry:
    """Callback chains keyed by event name."""

    def __init__(self) -> None:
        self._chains: Dict[str, CallbackChain] = {}

    def copy(self) -> "CallbackRegistry":
        """Copy for a subclass so its handlers don't leak into the parent."""
        registry = CallbackRegistry()
        registry._chains = {event: chain.copy() for event, chain in self._chains.items()}
        return registry

    def define(self, *events: str) -> None:
        for event in events:
            self._chains.setdefault(event, CallbackChain())

    def is_defined(self, event: str) -> bool:
        return event in self._chains

    @property
    def events(self) -> List[str]:
        return list(self._chains)

    def register(self, kind: str, event: str, handler: Handler) -> None:
        """
        Add a handler to an event.

        Args:
            kind: "before" or "after"
            event: Event name, which must have been defined
            handler: Called with the document

        Raises:
            UnknownCallbackEvent: If the event was never defined
            ValueError: If kind is not "before" or "after"
        """
        if kind not in CALLBACK_KINDS:
            raise ValueError(f"Callback kind must be one of: {', '.join(CALLBACK_KINDS)}")
        if event not in self._chains:
            raise UnknownCallbackEvent(event)
        getattr(self._chains[event], kind).append(handler)

    def run(self, event: str, document: Any, operation: Callable[[], Any]) -> Any:
        """
        Run an operation wrapped in the handlers of an event.

        Returns:
            Whatever the operation returns
        """
        chain = self._chains.get(event)
        if chain is None:
            raise UnknownCallbackEvent(event)

        for handler in chain.before:
            handler(document)
        result = operation()
        for handler in chain.after:
            handler(document)
        return result


def callback(kind: str, event: str) -> Callable[[F], F]:
    """
    Mark a document method as a lifecycle handler.

    Example:
        class Person(ParanoiaMixin, Document):
            @callback("after", "restore")
            def notify(self):
                ...
    """
    if kind not in CALLBACK_KINDS:
        raise ValueError(f"Callback kind must be one of: {', '.join(CALLBACK_KINDS)}")

    def decorator(func: F) -> F:
        hooks = list(getattr(func, "__callbacks__", []))
        hooks.append((kind, event))
        func.__callbacks__ = hooks  # type: ignore[attr-defined]
        return func

    return decorator

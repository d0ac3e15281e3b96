"""
CSRF correlation for OAuth redirects, and protection against handling the
same callback twice.

Before sending the browser to the provider, `CSRFGuard.issue` stores a
fresh state token in tab-scoped storage. When the provider redirects back,
`CSRFGuard.validate` requires the returned state to be exactly that token,
consumes it, and enters the flow's `InvocationGate` so that a second
arrival of the same callback is recognised as a benign duplicate rather
than triggering a second exchange.
"""

from enum import Enum

from cellauth.core.state import FlowType, StateDecodeError, decode_state, new_state

from .storage import Storage


class GateState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PROCESSED = "processed"


class GateEntry(str, Enum):
    ENTERED = "entered"
    ALREADY_ENTERED = "already_entered"
    ALREADY_DONE = "already_done"


class GateError(Exception):
    pass


class InvocationGate:
    """
    Lets exactly one caller through per flow instance:
    `not_started -> in_progress -> processed`.
    """

    state: GateState
    exchange_attempted: bool

    def __init__(self):
        self.state = GateState.NOT_STARTED
        self.exchange_attempted = False

    def try_enter(self) -> GateEntry:
        if self.state == GateState.PROCESSED:
            return GateEntry.ALREADY_DONE

        if self.state == GateState.IN_PROGRESS:
            return GateEntry.ALREADY_ENTERED

        self.state = GateState.IN_PROGRESS
        return GateEntry.ENTERED

    def mark_exchange_attempted(self):
        if self.state != GateState.IN_PROGRESS:
            raise GateError("The gate must be entered before exchanging")

        self.exchange_attempted = True

    def finish(self):
        self.state = GateState.PROCESSED

    def abort(self):
        """
        Reopen the gate after a local failure that happened before anything
        was sent to the server.

        Raises
        ------
        GateError
            If an exchange was already attempted. Authorization codes are
            single use, so such a flow can never be retried.
        """
        if self.exchange_attempted:
            raise GateError("Cannot retry a flow after its code was exchanged")

        self.state = GateState.NOT_STARTED


class ValidationResult(str, Enum):
    OK = "ok"
    MISSING = "missing"
    MISMATCH = "mismatch"
    ALREADY_PROCESSED = "already_processed"
    IN_PROGRESS = "in_progress"

    @property
    def benign(self) -> bool:
        """
        Duplicate arrivals of a callback that is being, or has been, handled.
        These are not errors and should not be shown to anyone.
        """
        return self in (ValidationResult.ALREADY_PROCESSED, ValidationResult.IN_PROGRESS)


class CSRFGuard:
    """
    Issues and validates OAuth state tokens for one tab.
    """

    storage: Storage
    gates: dict[FlowType, InvocationGate]

    def __init__(self, storage: Storage):
        self.storage = storage
        self.gates = {}

    @staticmethod
    def key_for(flow_type: FlowType) -> str:
        return f"cellauth.oauth_state.{FlowType(flow_type).value}"

    def gate(self, flow_type: FlowType) -> InvocationGate:
        flow_type = FlowType(flow_type)

        if flow_type not in self.gates:
            self.gates[flow_type] = InvocationGate()

        return self.gates[flow_type]

    def issue(self, flow_type: FlowType, request_id: str | None = None) -> str:
        """
        Create and store a fresh state token, starting a new flow instance.
        """
        flow_type = FlowType(flow_type)
        token = new_state(flow_type=flow_type, request_id=request_id).encode()

        self.storage.set(self.key_for(flow_type), token)
        self.gates[flow_type] = InvocationGate()

        return token

    def validate(self, token: str | None) -> ValidationResult:
        """
        Check a state token returned by the provider. On `ok` the stored
        token is consumed and the flow's gate has been entered; the caller
        must `finish` (or, before exchanging, `abort`) the flow.
        """
        if not token:
            return ValidationResult.MISSING

        try:
            flow_type = decode_state(token).flow_type
        except StateDecodeError:
            return ValidationResult.MISMATCH

        gate = self.gate(flow_type)

        if gate.state == GateState.PROCESSED:
            return ValidationResult.ALREADY_PROCESSED

        if gate.state == GateState.IN_PROGRESS:
            return ValidationResult.IN_PROGRESS

        key = self.key_for(flow_type)
        stored = self.storage.get(key)

        if stored is None:
            return ValidationResult.MISSING

        if stored != token:
            return ValidationResult.MISMATCH

        self.storage.delete(key)
        gate.try_enter()

        return ValidationResult.OK

    def finish(self, flow_type: FlowType):
        self.gate(flow_type).finish()

    def abort(self, token: str):
        """
        Undo a successful validation after a local failure, so the same
        callback can be handled again.

        Raises
        ------
        GateError
            If the code was already sent to the server.
        """
        flow_type = decode_state(token).flow_type
        self.gate(flow_type).abort()
        self.storage.set(self.key_for(flow_type), token)

"""
Battle errors.

Every invalid caller input maps to its own exception class so the transport
layer can tell caller bugs apart from ledger trouble.
"""


class BattleError(Exception):
    """Base class for battle lifecycle errors"""
    pass


class InvalidPhaseError(BattleError):
    """Operation is not valid in the battle's current phase"""

    def __init__(self, battle_id, operation: str, phase):
        self.battle_id = battle_id
        self.operation = operation
        self.phase = phase
        phase_name = getattr(phase, 'value', phase)
        super().__init__(f"Battle {battle_id}: cannot {operation} while {phase_name}")


class DuplicateParticipantError(BattleError):
    """Participant id already present in the roster"""

    def __init__(self, battle_id, participant_id: str):
        self.battle_id = battle_id
        self.participant_id = participant_id
        super().__init__(f"Battle {battle_id}: participant {participant_id} already joined")


class InsufficientParticipantsError(BattleError):
    """Start requested with too few participants"""

    def __init__(self, battle_id, participant_count: int, required: int):
        self.battle_id = battle_id
        self.participant_count = participant_count
        self.required = required
        super().__init__(
            f"Battle {battle_id}: need at least {required} participants to start, "
            f"have {participant_count}"
        )


class BattleNotFoundError(BattleError):
    """No battle registered under this id"""

    def __init__(self, battle_id):
        self.battle_id = battle_id
        super().__init__(f"Battle {battle_id} not found")


class BattleExistsError(BattleError):
    """A battle is already registered under this id"""

    def __init__(self, battle_id):
        self.battle_id = battle_id
        super().__init__(f"Battle {battle_id} already exists")


class OutcomeReportError(BattleError):
    """
    Ledger rejected the finalized outcome.

    The battle is Finalized in memory regardless; the outcome travels with the
    error so it can be reported again out of band.
    """

    def __init__(self, outcome, cause: Exception):
        self.outcome = outcome
        self.cause = cause
        super().__init__(
            f"Battle {outcome.battle_id}: outcome not reported to ledger: {cause}"
        )

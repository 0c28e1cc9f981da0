"""Typed failures raised by the ledger and the earning workflows.

Every error carries a machine-readable ``code`` and the HTTP status the
API layer reports it with.  Callers catch by type; only
``ConcurrencyConflict`` is safe to resubmit.
"""


class LedgerError(Exception):
    code = "ledger_error"
    http_status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(LedgerError):
    code = "not_found"
    http_status = 404


class AccountNotFound(NotFound):
    code = "account_not_found"

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class ChoreNotFound(NotFound):
    code = "chore_not_found"

    def __init__(self, instance_id: int):
        self.instance_id = instance_id
        super().__init__(f"Chore {instance_id} not found")


class TemplateNotFound(NotFound):
    code = "template_not_found"

    def __init__(self, template_id: int):
        self.template_id = template_id
        super().__init__(f"Chore template {template_id} not found")


class InvalidTransition(LedgerError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, instance_id: int, status: str, action: str):
        self.instance_id = instance_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} chore {instance_id} while {status}")


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"
    http_status = 409

    def __init__(self, account_id: int, balance, amount):
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"balance {balance}, requested {amount}"
        )


class AlreadyPaidThisWeek(LedgerError):
    code = "already_paid_this_week"
    http_status = 409

    def __init__(self, account_id: int, week_start):
        self.account_id = account_id
        self.week_start = week_start
        super().__init__(
            f"Allowance already paid this week (week of {week_start})"
        )


class ZeroAllowanceAmount(LedgerError):
    code = "zero_allowance_amount"
    http_status = 422

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} has no weekly allowance configured")


class AllowancePaused(LedgerError):
    code = "allowance_paused"
    http_status = 409

    def __init__(self, account_id: int, reason: str | None = None):
        self.account_id = account_id
        self.reason = reason
        message = f"Allowance for account {account_id} is paused"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ProofRequired(LedgerError):
    code = "proof_required"
    http_status = 422

    def __init__(self, instance_id: int):
        self.instance_id = instance_id
        super().__init__(f"Chore {instance_id} requires a photo proof")


class InvalidAmount(LedgerError, ValueError):
    code = "invalid_amount"
    http_status = 422

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be greater than zero, got {amount}")


class DuplicateSourceRef(LedgerError):
    code = "duplicate_source_ref"
    http_status = 409

    def __init__(self, account_id: int, source_ref: str):
        self.account_id = account_id
        self.source_ref = source_ref
        super().__init__(
            f"A transaction for {source_ref} already exists on account {account_id}"
        )


class ConcurrencyConflict(LedgerError):
    code = "concurrency_conflict"
    http_status = 503

    def __init__(self, account_id: int, attempts: int):
        self.account_id = account_id
        self.attempts = attempts
        super().__init__(
            f"Account {account_id} was modified concurrently; "
            f"gave up after {attempts} attempts"
        )


class ReservedSourceRef(LedgerError):
    code = "reserved_source_ref"
    http_status = 422

    def __init__(self, source_ref: str):
        self.source_ref = source_ref
        super().__init__(
            f"Source reference {source_ref!r} is reserved for allowance and chore payouts"
        )

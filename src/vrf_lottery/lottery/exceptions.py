"""
Lottery exceptions

All errors raised by the lottery and its ledger live here so that callers
(keeper loop, oracle adapter, HTTP layer) can handle them in one place.
"""


class LotteryError(Exception):
    """Base class for every lottery error"""
    pass


# ============ Validation errors ============

class LotteryConfigError(LotteryError):
    """Invalid construction parameters"""
    pass


class InsufficientPayment(LotteryError):
    """Payment below the entrance fee"""
    def __init__(self, amount, entrance_fee):
        self.amount = amount
        self.entrance_fee = entrance_fee
        super().__init__(f"Payment {amount} is below the entrance fee {entrance_fee}")


class ReservedParticipant(LotteryError):
    """Participant identifier is the lottery's own pot account"""
    def __init__(self, participant):
        self.participant = participant
        super().__init__(f"{participant!r} is reserved for the lottery pot and cannot enter")


class RoundNotOpen(LotteryError):
    """Entry attempted while the round is calculating"""
    def __init__(self, state):
        self.state = state
        super().__init__(f"Lottery is not open (state={state.name})")


class IndexOutOfRange(LotteryError):
    """No player at the requested index"""
    def __init__(self, index, size):
        self.index = index
        self.size = size
        super().__init__(f"Player index {index} out of range for {size} players")


class InvalidRandomness(LotteryError):
    """Fulfillment delivered no random words"""
    pass


# ============ Precondition errors ============

class UpkeepNotNeeded(LotteryError):
    """perform_upkeep called while check_upkeep is false"""
    def __init__(self, balance, num_players, state, status=None):
        self.balance = balance
        self.num_players = num_players
        self.state = state
        self.status = status
        super().__init__(
            f"Upkeep not needed (balance={balance}, players={num_players}, state={state.name})"
        )


class UnknownRequest(LotteryError):
    """Fulfillment for a request the lottery is not waiting on"""
    def __init__(self, request_id, pending_request_id=None):
        self.request_id = request_id
        self.pending_request_id = pending_request_id
        super().__init__(f"Unknown randomness request {request_id}")


# ============ Settlement errors ============

class PayoutFailed(LotteryError):
    """Transfer of the pot to the winner did not complete"""
    def __init__(self, winner, amount, reason=None):
        self.winner = winner
        self.amount = amount
        self.reason = reason
        super().__init__(f"Payout of {amount} to {winner} failed: {reason}")


class RandomnessRequestFailed(LotteryError):
    """The oracle refused or failed the randomness request"""
    pass


# ============ Ledger errors ============

class LedgerError(LotteryError):
    """Base class for ledger transfer errors"""
    pass


class InsufficientFunds(LedgerError):
    """Sender balance lower than the transfer amount"""
    def __init__(self, account, balance, amount):
        self.account = account
        self.balance = balance
        self.amount = amount
        super().__init__(f"Account {account} holds {balance}, cannot send {amount}")


class TransferRejected(LedgerError):
    """Recipient refused the incoming transfer"""
    def __init__(self, recipient, reason=None):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Recipient {recipient} rejected the transfer: {reason}")

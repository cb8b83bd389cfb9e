"""Convenience imports for all schema classes used by the API."""

from .family import (
    RegisterRequest,
    ParentCreate,
    ParentLogin,
    ParentRead,
    FamilyRead,
    FamilyUpdate,
)
from .child import ChildCreate, ChildRead, ChildLogin
from .catalog import (
    QuestCreate,
    QuestRead,
    QuestUpdate,
    RewardCreate,
    RewardRead,
    RewardUpdate,
)
from .ledger import (
    StarRequestCreate,
    StarRecordCreate,
    StarTransactionRead,
    RedemptionCreate,
    RedemptionRead,
    CreditTransactionRead,
    HistoryResponse,
)
from .approval import (
    ApproveRequest,
    RejectRequest,
    BatchApproveRequest,
    BatchRejectRequest,
    BatchResultRead,
)
from .balance import BalanceRead, ReconcileResponse
from .credit import (
    CreditSettingsRead,
    CreditSettingsUpdate,
    InterestTierIn,
    InterestTierRead,
    InterestTierTable,
    SettlementRead,
    SettlementRunRequest,
    SettlementRunResponse,
)

__all__ = [
    "RegisterRequest",
    "ParentCreate",
    "ParentLogin",
    "ParentRead",
    "FamilyRead",
    "FamilyUpdate",
    "ChildCreate",
    "ChildRead",
    "ChildLogin",
    "QuestCreate",
    "QuestRead",
    "QuestUpdate",
    "RewardCreate",
    "RewardRead",
    "RewardUpdate",
    "StarRequestCreate",
    "StarRecordCreate",
    "StarTransactionRead",
    "RedemptionCreate",
    "RedemptionRead",
    "CreditTransactionRead",
    "HistoryResponse",
    "ApproveRequest",
    "RejectRequest",
    "BatchApproveRequest",
    "BatchRejectRequest",
    "BatchResultRead",
    "BalanceRead",
    "ReconcileResponse",
    "CreditSettingsRead",
    "CreditSettingsUpdate",
    "InterestTierIn",
    "InterestTierRead",
    "InterestTierTable",
    "SettlementRead",
    "SettlementRunRequest",
    "SettlementRunResponse",
]

from pydantic import AliasChoices, BaseModel, Field
from typing import List, Optional


class CollectRequest(BaseModel):
    userWallet: Optional[str] = None
    amount: Optional[float] = None


class CollectResponse(BaseModel):
    transaction: Optional[str] = None
    actualAmount: float
    signature: Optional[str] = None
    message: Optional[str] = None


class ConfirmCollectRequest(BaseModel):
    userWallet: Optional[str] = None
    signature: Optional[str] = Field(None, validation_alias=AliasChoices("signature", "transferId"))
    amount: Optional[float] = None


class SaveGameRequest(BaseModel):
    walletAddress: Optional[str] = None
    spinCost: float = 0
    resultSymbols: List[int] = []
    wonAmount: float = 0
    updateUnclaimedRewards: Optional[float] = None
    updateSpinsRemaining: Optional[int] = None
    spinsPurchased: Optional[int] = None


class SpinRequest(BaseModel):
    walletAddress: Optional[str] = None


class SpinResponse(BaseModel):
    positions: List[int]
    symbols: List[int]
    symbolNames: List[str]
    winAmount: float
    spinsRemaining: int
    unclaimedRewards: float

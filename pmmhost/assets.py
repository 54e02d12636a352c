from __future__ import annotations
from typing import TYPE_CHECKING, Dict

from .collaborators import MINTER_ROLE, require_role
from .core import Address
from .errors import ZeroAmount
from .guard import nonreentrant
from .modules import Module, entrypoint

if TYPE_CHECKING:
    from .host import CallContext

BALANCE_OF = "balanceOf(address,address)"
HOLDINGS = "holdings(address)"
TOTAL_ISSUED = "totalIssued(address)"
MINT = "mint(address,address,uint256)"
TRANSFER = "transfer(address,address,uint256)"


class AssetModule(Module):
    """Balances of the assets the pools trade."""

    name = "assets"

    @entrypoint(BALANCE_OF, view=True)
    def balance_of(self, ctx: "CallContext", asset: str, account: Address) -> int:
        return ctx.vault().get(asset, account)

    @entrypoint(HOLDINGS, view=True)
    def holdings(self, ctx: "CallContext", account: Address) -> Dict[str, int]:
        return ctx.vault().holdings(account)

    @entrypoint(TOTAL_ISSUED, view=True)
    def total_issued(self, ctx: "CallContext", asset: str) -> int:
        return int(ctx.vault().layout.supply.get(asset, 0))

    @entrypoint(MINT)
    def mint(self, ctx: "CallContext", asset: str, account: Address, amount: int) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, MINTER_ROLE, ctx.caller)
            if amount <= 0:
                raise ZeroAmount("mint amount is zero")
            ctx.vault().mint(asset, account, amount)
        ctx.emit("MINTED", actor_id=ctx.caller, asset_id=asset, amount=amount, meta={"account": account})

    @entrypoint(TRANSFER)
    def transfer(self, ctx: "CallContext", asset: str, to: Address, amount: int) -> None:
        with nonreentrant(ctx.storage):
            if amount <= 0:
                raise ZeroAmount("transfer amount is zero")
            ctx.vault().transfer(asset, ctx.caller, to, amount)
        ctx.emit("TRANSFER", actor_id=ctx.caller, asset_id=asset, amount=amount, meta={"to": to})

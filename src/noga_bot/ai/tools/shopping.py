"""Shopping-list tools backed by Google Tasks."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from noga_bot.ai.tools.base import NoArgs, Tool, ToolArgs
from noga_bot.skills.google import ShoppingListClient


class ItemArgs(ToolArgs):
    item: str = Field(min_length=1, description="Item name.")


class _ShoppingTool(Tool):
    def __init__(self, shopping: ShoppingListClient):
        self._shopping = shopping


class AddShoppingItemTool(_ShoppingTool):
    args_model = ItemArgs

    @property
    def name(self) -> str:
        return "add_shopping_item"

    @property
    def description(self) -> str:
        return "הוסף פריט לרשימת הקניות. Add an item to the shopping list."

    async def execute(self, args: ItemArgs) -> dict[str, Any]:
        return await self._shopping.add_item(args.item)


class GetShoppingListTool(_ShoppingTool):
    args_model = NoArgs

    @property
    def name(self) -> str:
        return "get_shopping_list"

    @property
    def description(self) -> str:
        return "הצג את רשימת הקניות הנוכחית. Get the current shopping list."

    async def execute(self, args: NoArgs) -> dict[str, Any]:
        return await self._shopping.list_items()


class CompleteShoppingItemTool(_ShoppingTool):
    args_model = ItemArgs

    @property
    def name(self) -> str:
        return "complete_shopping_item"

    @property
    def description(self) -> str:
        return "סמן פריט כנקנה ברשימת הקניות. Mark a shopping item as completed."

    async def execute(self, args: ItemArgs) -> dict[str, Any]:
        return await self._shopping.complete_item(args.item)


class DeleteShoppingItemTool(_ShoppingTool):
    args_model = ItemArgs

    @property
    def name(self) -> str:
        return "delete_shopping_item"

    @property
    def description(self) -> str:
        return "מחק פריט מרשימת הקניות. Delete an item from the shopping list."

    async def execute(self, args: ItemArgs) -> dict[str, Any]:
        return await self._shopping.delete_item(args.item)

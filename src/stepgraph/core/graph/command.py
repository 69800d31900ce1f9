"""Command: a node return value that updates state and redirects the flow."""

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Command(BaseModel):
    """Returned by a node instead of a plain partial update.

    Attributes:
        update: Partial update, merged through the schema as if returned directly
        goto: Node name(s) that replace the edge-derived frontier for this step

    Example:
        ```python
        async def router(ctx, state):
            return Command(update={"count": 1}, goto="finish")
        ```
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    update: Any = None
    goto: Optional[Union[str, List[str]]] = Field(default=None)

    def goto_nodes(self) -> List[str]:
        if self.goto is None:
            return []
        if isinstance(self.goto, str):
            return [self.goto] if self.goto else []
        return [name for name in self.goto if name]

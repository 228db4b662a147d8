"""
Structured content (cards) handed to platform adapters for rendering.

Pure data: a declarative tree of container, text block, divider and an
action row of buttons and selects. Adapters decide how each node looks on
their platform; nothing here renders or behaves.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class SelectOption(BaseModel):
    type: Literal["select_option"] = "select_option"
    label: str
    value: str


class Button(BaseModel):
    type: Literal["button"] = "button"
    id: str = Field(min_length=1)
    label: str
    style: Optional[Literal["primary", "danger"]] = None
    value: Optional[str] = None


class Select(BaseModel):
    type: Literal["select"] = "select"
    id: str = Field(min_length=1)
    label: str
    options: list[SelectOption] = Field(default_factory=list)


ActionElement = Annotated[Union[Button, Select], Field(discriminator="type")]


class Actions(BaseModel):
    type: Literal["actions"] = "actions"
    children: list[ActionElement] = Field(default_factory=list)


class CardText(BaseModel):
    type: Literal["text"] = "text"
    text: str


class Divider(BaseModel):
    type: Literal["divider"] = "divider"


CardElement = Annotated[
    Union[CardText, Divider, Actions], Field(discriminator="type")
]


class Card(BaseModel):
    """Top-level container."""

    type: Literal["card"] = "card"
    title: Optional[str] = None
    children: list[CardElement] = Field(default_factory=list)

    def action_ids(self) -> list[str]:
        """Ids of every button and select in the card, in order."""
        return [
            element.id
            for child in self.children
            if isinstance(child, Actions)
            for element in child.children
        ]


StructuredContent = Card
PostContent = Union[Card, str]

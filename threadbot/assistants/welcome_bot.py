"""
Default bot behaviour: welcome card on mention, two card actions, and
streamed model replies in subscribed threads.
"""

from __future__ import annotations

from threadbot.core.dispatcher import EventDispatcher
from threadbot.core.pipeline import StreamingResponsePipeline
from threadbot.core.thread import Thread
from threadbot.schemas.cards import (
    Actions,
    Button,
    Card,
    CardText,
    Divider,
    Select,
    SelectOption,
)
from threadbot.schemas.conversation import InboundEvent, Interaction
from threadbot.services.history_service import HistoryAssembler

PRIMARY_ACTION = "primary"
SELECT_FRUIT_ACTION = "select-fruit"


def build_welcome_card() -> Card:
    return Card(
        title="Welcome to my bot!",
        children=[
            CardText(
                text="Hello! I am a **bot**. I can respond to your _messages_ and button clicks."
            ),
            Divider(),
            Actions(
                children=[
                    Button(id=PRIMARY_ACTION, label="Click me", style="primary"),
                    Select(
                        id=SELECT_FRUIT_ACTION,
                        label="Your favorite fruit",
                        options=[
                            SelectOption(label="🍎", value="apple"),
                            SelectOption(label="🍌", value="banana"),
                            SelectOption(label="🍊", value="orange"),
                        ],
                    ),
                ]
            ),
        ],
    )


class WelcomeBot:
    def __init__(
        self,
        assembler: HistoryAssembler,
        pipeline: StreamingResponsePipeline,
        history_limit: int = 20,
    ) -> None:
        self._assembler = assembler
        self._pipeline = pipeline
        self._history_limit = history_limit

    def register(self, dispatcher: EventDispatcher) -> None:
        dispatcher.on_mention()(self.on_mention)
        dispatcher.on_action(PRIMARY_ACTION)(self.on_primary)
        dispatcher.on_action(SELECT_FRUIT_ACTION)(self.on_select_fruit)
        dispatcher.on_subscribed_message()(self.on_subscribed_message)

    async def on_mention(self, thread: Thread, event: InboundEvent) -> None:
        # Subscription must be durable before the card is visible.
        await thread.subscribe()
        await thread.post(build_welcome_card())

    async def on_primary(self, thread: Thread, event: Interaction) -> None:
        await thread.post("You clicked the button!")

    async def on_select_fruit(self, thread: Thread, event: Interaction) -> None:
        await thread.post(f"You selected: {event.value}")

    async def on_subscribed_message(self, thread: Thread, event: InboundEvent) -> None:
        transcript = await self._assembler.assemble(thread.ref, self._history_limit)
        await self._pipeline.respond(thread, transcript)

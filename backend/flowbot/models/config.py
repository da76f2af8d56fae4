# /flowbot/models/config.py

from pydantic import BaseModel, Field

from flowbot.config import strings
from flowbot.models.flow import MenuTemplate


class FlowTexts(BaseModel):
    """
    User-facing texts consumed by the session service and the command
    registry. Defaults come from config/strings.py; tests and deployments may
    override any of them.
    """
    welcome: str = Field(default=strings.WELCOME_TEXT, description="Sent when the menu flow is disabled")
    friendly_retry: str = Field(default=strings.FRIENDLY_RETRY, description="First invalid input on a menu")
    fallback_retry: str = Field(default=strings.FALLBACK_RETRY, description="Second invalid input, with the fallback menu")
    fallback_closure: str = Field(default=strings.FALLBACK_CLOSURE, description="Third invalid input, before locking")
    locked_notice: str = Field(default=strings.LOCKED_NOTICE, description="Sent right after a lock is applied")
    resumed_notice: str = Field(default=strings.RESUMED_NOTICE, description="Sent when an expired lock is lifted")
    awaiting_agent: str = Field(default=strings.AWAITING_AGENT, description="Fallback 'wait for agent' confirmation")
    invalid_while_locked: str = Field(default=strings.INVALID_WHILE_LOCKED, description="Optional notice while locked")
    suggestion_prompt: str = Field(default=strings.SUGGESTION_PROMPT, description="Template with an {option} placeholder")
    suggestion_confirm_hint: str = Field(default=strings.SUGGESTION_CONFIRM_HINT, description="Extra hint for weaker suggestions")
    flow_unavailable: str = Field(default=strings.FLOW_UNAVAILABLE, description="No flow could be started")
    expired_flow: str = Field(default=strings.EXPIRED_FLOW, description="A remembered flow is being re-entered")
    invalid_option: str = Field(default=strings.INVALID_OPTION, description="Invalid input on a plain-text node")
    generic_flow_error: str = Field(default=strings.GENERIC_FLOW_ERROR, description="Data-integrity error in a flow")
    flow_cancelled: str = Field(default=strings.FLOW_CANCELLED, description="Reply to an explicit cancel command")

    def suggestion_for(self, option_text: str) -> str:
        return self.suggestion_prompt.format(option=option_text)


class MenuTemplates(BaseModel):
    initial: MenuTemplate = Field(default_factory=lambda: strings.INITIAL_MENU_TEMPLATE.model_copy(deep=True))
    fallback: MenuTemplate = Field(default_factory=lambda: strings.FALLBACK_MENU_TEMPLATE.model_copy(deep=True))

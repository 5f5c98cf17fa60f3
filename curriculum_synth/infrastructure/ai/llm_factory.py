from typing import Optional, Union

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.runnables import Runnable

from curriculum_synth.core.settings import settings

# Capability -> default temperature.
_TEMPERATURES = {
    "PLANNING": 0.4,
    "DRAFTING": 0.7,
    "EDITING": 0.2,
    "AUDIT": 0.1,
}

# Gemini built-in tool; the model runs the searches itself.
GOOGLE_SEARCH_TOOL = {"google_search": {}}


def get_llm(
    capability: str = "DRAFTING",
    temperature: Optional[float] = None,
    prefer_provider: str = "auto",
    fast: bool = False,
    ground_with_search: bool = False,
) -> Union[BaseChatModel, Runnable]:
    """
    Returns the chat model for a synthesis capability.
    Gemini drives drafting and editing; Groq is the fallback, and the first
    choice for planning where latency matters more than depth.
    With ground_with_search, a Gemini model is bound to Google Search; Groq
    has no such tool and is returned ungrounded.
    """
    if temperature is None:
        temperature = _TEMPERATURES.get(capability.upper(), 0.3)

    def _build_gemini() -> Optional[Union[BaseChatModel, Runnable]]:
        if not settings.GEMINI_API_KEY:
            return None
        from langchain_google_genai import ChatGoogleGenerativeAI

        model = ChatGoogleGenerativeAI(
            model=settings.GEMINI_FLASH_MODEL_NAME if fast else settings.GEMINI_MODEL_NAME,
            temperature=temperature,
            google_api_key=settings.GEMINI_API_KEY,
        )
        if ground_with_search:
            return model.bind_tools([GOOGLE_SEARCH_TOOL])
        return model

    def _build_groq() -> Optional[BaseChatModel]:
        if not settings.GROQ_API_KEY:
            return None
        from langchain_groq import ChatGroq

        return ChatGroq(
            model=settings.GROQ_MODEL_NAME,
            temperature=temperature,
            api_key=settings.GROQ_API_KEY,
        )

    preference = (prefer_provider or "auto").strip().lower()
    if preference == "groq":
        provider_order = ["groq", "gemini"]
    elif preference == "gemini":
        provider_order = ["gemini", "groq"]
    elif capability.upper() == "PLANNING":
        provider_order = ["groq", "gemini"]
    else:
        provider_order = ["gemini", "groq"]

    for provider in provider_order:
        model = _build_groq() if provider == "groq" else _build_gemini()
        if model is not None:
            return model

    raise ValueError("No AI provider configured. Set GEMINI_API_KEY or GROQ_API_KEY.")

"""Future-self persona prompt templates."""
import time
from typing import Any, Dict

from future_self.core.config import Settings, settings
from future_self.services.session.models import Session

END_CALL_PHRASES = ["goodbye", "talk to you later", "bye", "thank you"]

PERSONA_TYPE = "future_self"


def build_future_self_prompt(session: Session) -> str:
    """Generate the system prompt for the future-self assistant."""
    user_name = session.user_name or "my friend"
    transcript_history = session.get_transcript_text()
    problem = session.problem_description or "the challenge they described"

    return f"""You are the future version of the person talking, calling from 10 years in the future.

Here's the conversation your past self just had with a counselor:

---
{transcript_history}
---

Your task:
1. You remember this exact moment and conversation vividly
2. Address their specific concerns with wisdom from having lived through it
3. Reference specific things they said to show you remember
4. Be warm, reassuring, but also specific about how things get better
5. Speak naturally - you're talking to yourself from the past
6. Keep the mystical element but make it feel real and personal

Important details to weave in:
- Use their name "{user_name}" naturally in conversation
- The problem they shared: {problem}
- Reference their specific problem using their exact words from the transcript
- Share how this challenge led to growth and positive outcomes
- Be specific about what changed and how their life improved
- Maintain their speech patterns and emotional style

Speaking Style:
- Talk as if you're having an intimate conversation with yourself
- Use "you" when addressing them (since you're their future self talking to past self)
- Be encouraging but authentic - no false promises
- Include specific memories from this conversation
- Show how their current struggle becomes their greatest strength

Remember: You lived through their exact situation and came out stronger. Share that journey with warmth, specificity, and hope."""


def build_first_message(session: Session) -> str:
    """Generate the opening line of the callback."""
    name = session.user_name or "you"
    return (
        f"Hello {name}... uh... I mean, me. This is going to be strange to hear, "
        f"but I'm you. I'm calling from the future. I went through what you're going "
        f"through now and want to help you through this moment. Does that sound ok?"
    )


def build_voice(provider: str, voice_id: str) -> Dict[str, str]:
    return {"provider": provider, "voiceId": voice_id}


def build_assistant_config(
    session: Session,
    voice: Dict[str, str],
    config: Settings = settings,
) -> Dict[str, Any]:
    """
    Build the assistant creation payload for a session.

    Args:
        session: Session whose transcript seeds the persona
        voice: Voice reference ({"provider": ..., "voiceId": ...})
        config: Settings providing model and duration

    Returns:
        JSON-serialisable assistant configuration
    """
    return {
        "name": f"Future Self - {session.display_name}",
        "voice": voice,
        "model": {
            "provider": "openai",
            "model": config.persona_model,
            "messages": [
                {"role": "system", "content": build_future_self_prompt(session)},
            ],
            "temperature": config.persona_temperature,
        },
        "firstMessage": build_first_message(session),
        "endCallPhrases": list(END_CALL_PHRASES),
        "maxDurationSeconds": config.persona_max_duration_seconds,
        "recordingEnabled": True,
        "metadata": {
            "sessionId": session.id,
            "originalCallId": session.call_id,
            "type": PERSONA_TYPE,
            "createdAt": int(time.time() * 1000),
        },
    }

"""Unit tests for guardrail chains."""

import pytest

from agentsdk.errors import GuardrailError
from agentsdk.guardrails import GuardrailChain, KeywordGuardrail


class Suffix:
    def __init__(self, name, suffix):
        self.name = name
        self.suffix = suffix

    async def process_input(self, text, ctx):
        return text + self.suffix

    async def process_output(self, text, ctx):
        return text + self.suffix.upper()


class Broken:
    name = "broken"

    async def process_input(self, text, ctx):
        raise RuntimeError("kaput")

    async def process_output(self, text, ctx):
        return text


class TestKeywordGuardrail:
    async def test_redacts_whole_words(self, ctx):
        g = KeywordGuardrail(["secret"])
        assert await g.process_input("a Secret and secretive", ctx) == "a [REDACTED] and secretive"

    async def test_blocks(self, ctx):
        g = KeywordGuardrail(["secret"], block=True, name="no-secrets")
        with pytest.raises(GuardrailError) as exc:
            await g.process_output("the secret", ctx)
        assert exc.value.guardrail == "no-secrets"

    async def test_no_keywords_passes_through(self, ctx):
        assert await KeywordGuardrail([]).process_input("anything", ctx) == "anything"


class TestGuardrailChain:
    async def test_runs_in_order(self, ctx):
        chain = GuardrailChain([Suffix("a", "-a")])
        chain.use(Suffix("b", "-b"))

        assert len(chain) == 2
        assert await chain.process_input("x", ctx) == "x-a-b"
        assert await chain.process_output("x", ctx) == "x-A-B"

    async def test_failures_wrapped(self, ctx):
        chain = GuardrailChain([Broken()])
        with pytest.raises(GuardrailError, match="kaput") as exc:
            await chain.process_input("x", ctx)
        assert exc.value.guardrail == "broken"
        assert isinstance(exc.value.cause, RuntimeError)

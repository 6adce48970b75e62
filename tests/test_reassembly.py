from doc_rewriter.errors import ProviderError, ProviderRateLimitError
from doc_rewriter.chunked.prompts import SMOOTHING_SYSTEM_PROMPT
from doc_rewriter.chunked.reassembly import ReassemblyPass

from helpers import ScriptedProvider, make_registry

TEXT = "First part, rewritten.\n\nSecond part, rewritten.\n\nThird part, rewritten."


def _echo_document(text, prompt):
    return prompt.split("\n\n", 1)[1]


def test_smoothing_replaces_text():
    provider = ScriptedProvider(lambda text, prompt: TEXT.replace("Second", "Then the second"))
    result = ReassemblyPass(make_registry(provider)).smooth(TEXT, "mock", rewritten_chunks=3)
    assert result.applied
    assert result.status == "smoothed"
    assert "Then the second part" in result.text
    assert provider.systems == [SMOOTHING_SYSTEM_PROMPT]
    assert "3 separate parts" in provider.prompts[0]
    assert TEXT in provider.prompts[0]


def test_single_rewritten_chunk_needs_no_smoothing():
    provider = ScriptedProvider(_echo_document)
    result = ReassemblyPass(make_registry(provider)).smooth(TEXT, "mock", rewritten_chunks=1)
    assert result.status == "not_needed"
    assert result.text == TEXT
    assert provider.prompts == []


def test_too_large_text_is_left_alone():
    provider = ScriptedProvider(_echo_document)
    smoother = ReassemblyPass(make_registry(provider), max_context_chars=20)
    result = smoother.smooth(TEXT, "mock", rewritten_chunks=3)
    assert result.status == "too_large"
    assert result.text == TEXT
    assert provider.prompts == []

    # per-call limit wins over the constructor default
    assert smoother.smooth(TEXT, "mock", rewritten_chunks=3, max_context_chars=10_000).status == "smoothed"


def test_token_budget_too_small_counts_as_too_large():
    provider = ScriptedProvider(_echo_document)
    result = ReassemblyPass(make_registry(provider, max_tokens_per_minute=10)).smooth(TEXT, "mock", rewritten_chunks=3)
    assert result.status == "too_large"
    assert provider.prompts == []


def test_backend_failure_keeps_unsmoothed_text():
    def broken(text, prompt):
        raise ProviderError("mock", "server exploded", status_code=500)

    result = ReassemblyPass(make_registry(ScriptedProvider(broken))).smooth(TEXT, "mock", rewritten_chunks=2)
    assert result.status == "failed"
    assert result.text == TEXT
    assert "server exploded" in result.detail


def test_exhausted_retries_keep_unsmoothed_text():
    def limited(text, prompt):
        raise ProviderRateLimitError("mock")

    provider = ScriptedProvider(limited)
    result = ReassemblyPass(make_registry(provider, max_retries=1)).smooth(TEXT, "mock", rewritten_chunks=2)
    assert result.status == "failed"
    assert result.text == TEXT
    assert len(provider.prompts) == 2


def test_reply_with_drifting_length_is_rejected():
    provider = ScriptedProvider(lambda text, prompt: "Too short.")
    result = ReassemblyPass(make_registry(provider)).smooth(TEXT, "mock", rewritten_chunks=3)
    assert result.status == "rejected"
    assert result.text == TEXT
    assert not result.applied

import pytest

from llm_relay.providers.ali import AliAdaptor
from llm_relay.providers.ali.constants import DEFAULT_MODEL_RATIO as ALI_DEFAULT_RATIO
from llm_relay.providers.openai import OpenAIAdaptor
from llm_relay.providers.openai.constants import MODEL_RATIOS
from llm_relay.relay.meta import ChannelType
from llm_relay.services.pricing import (
    DEFAULT_COMPLETION_RATIO,
    DEFAULT_MODEL_RATIO,
    MILLI_TOKENS_USD,
    calc_quota,
    get_completion_ratio,
    get_model_ratio,
    get_model_ratio_with_channel,
)


def test_global_table_exact_lookup() -> None:
    assert get_model_ratio("gpt-4o", ChannelType.OPENAI) == pytest.approx(2.5 * MILLI_TOKENS_USD)
    assert get_completion_ratio("gpt-4o", ChannelType.OPENAI) == 4


def test_global_table_channel_specific_models() -> None:
    assert get_model_ratio("deepseek-chat", ChannelType.DEEPSEEK) == pytest.approx(
        0.27 * MILLI_TOKENS_USD
    )
    # модель другого типа канала в этой таблице не видна
    assert get_model_ratio("deepseek-chat", ChannelType.GROQ) == DEFAULT_MODEL_RATIO


def test_unknown_model_falls_back_to_default_pair() -> None:
    assert get_model_ratio("no-such-model", ChannelType.OPENAI) == DEFAULT_MODEL_RATIO
    assert get_completion_ratio("no-such-model", ChannelType.OPENAI) == DEFAULT_COMPLETION_RATIO


def test_channel_override_ratio_wins() -> None:
    assert get_model_ratio_with_channel("gpt-4o", ChannelType.OPENAI, {"gpt-4o": 9.0}) == 9.0
    assert get_model_ratio_with_channel("gpt-4o", ChannelType.OPENAI, {"other": 9.0}) == pytest.approx(
        2.5 * MILLI_TOKENS_USD
    )


def test_openai_adaptor_prefers_own_table_then_global() -> None:
    adaptor = OpenAIAdaptor(ChannelType.DEEPSEEK)
    assert adaptor.get_model_ratio("o3-mini") == MODEL_RATIOS["o3-mini"].ratio
    assert adaptor.get_model_ratio("deepseek-reasoner") == pytest.approx(0.55 * MILLI_TOKENS_USD)
    assert adaptor.get_completion_ratio("deepseek-reasoner") == 4


def test_ali_adaptor_default_pricing() -> None:
    adaptor = AliAdaptor()
    assert adaptor.get_model_ratio("qwen-unknown") == ALI_DEFAULT_RATIO
    assert adaptor.get_completion_ratio("qwen-unknown") == 1.0
    assert "qwen-plus" in adaptor.get_model_list()


def test_calc_quota() -> None:
    assert calc_quota(100, 50, 7, model_ratio=1.25, completion_ratio=4) == 382
    # ненулевой вызов по ненулевой ставке не бывает бесплатным
    assert calc_quota(1, 0, 0, model_ratio=0.01, completion_ratio=1) == 1
    assert calc_quota(0, 0, 0, model_ratio=1.0, completion_ratio=1) == 0

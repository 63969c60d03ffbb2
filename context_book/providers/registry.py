"""Provider 与模型预设。

集中维护可选的 Gemini 模型以及常见的 OpenAI 兼容服务（模型 ID + 基础 URL），
上层只需要选一个预设 ID，不必记住每家厂商的地址。"""

from dataclasses import dataclass, replace
from typing import List, Literal, Mapping

from context_book.domain.models import AnalyzeConfig


@dataclass(frozen=True)
class ModelPreset:
    """一个可选模型。"""

    id: str
    name: str
    base_url: str = ""
    group: Literal["china", "global"] = "global"
    desc: str = ""


GEMINI_MODELS: List[ModelPreset] = [
    ModelPreset(id="gemini-3-flash-preview", name="Gemini 3.0 Flash (Recommended)"),
    ModelPreset(id="gemini-3-pro-preview", name="Gemini 3.0 Pro"),
    ModelPreset(id="gemini-flash-latest", name="Gemini 2.5 Flash"),
    ModelPreset(id="gemini-flash-lite-latest", name="Gemini 2.5 Flash Lite"),
]

OPENAI_PRESETS: List[ModelPreset] = [
    # 国内模型
    ModelPreset(
        id="deepseek-chat",
        name="DeepSeek V3",
        base_url="https://api.deepseek.com",
        group="china",
        desc="性价比之王",
    ),
    ModelPreset(
        id="glm-4-flash",
        name="智谱 GLM-4 Flash",
        base_url="https://open.bigmodel.cn/api/paas/v4",
        group="china",
        desc="免费/极速",
    ),
    ModelPreset(
        id="qwen-turbo",
        name="通义千问 Turbo",
        base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
        group="china",
        desc="阿里云官方",
    ),
    ModelPreset(
        id="moonshot-v1-8k",
        name="Kimi (Moonshot)",
        base_url="https://api.moonshot.cn/v1",
        group="china",
        desc="长文本友好",
    ),
    # 国际
    ModelPreset(
        id="llama-3.3-70b-versatile",
        name="Groq (Llama 3.3)",
        base_url="https://api.groq.com/openai/v1",
        desc="全球最快推理",
    ),
    ModelPreset(
        id="gpt-4o-mini",
        name="GPT-4o Mini",
        base_url="https://api.openai.com/v1",
        desc="OpenAI 官方",
    ),
]


PRESET_REGISTRY: Mapping[str, ModelPreset] = {p.id: p for p in OPENAI_PRESETS}


def get_preset(preset_id: str) -> ModelPreset:
    """根据 ID 获取 OpenAI 兼容预设，名称不区分大小写。"""

    key = preset_id.lower()
    for k, preset in PRESET_REGISTRY.items():
        if k.lower() == key:
            return preset
    raise KeyError(f"Unknown preset: {preset_id!r}")


def apply_preset(config: AnalyzeConfig, preset_id: str) -> AnalyzeConfig:
    """返回替换了 model_id / base_url 的新配置（切换到 completion 后端），API Key 保持不变。"""

    preset = get_preset(preset_id)
    return replace(config, provider="completion", model_id=preset.id, base_url=preset.base_url)

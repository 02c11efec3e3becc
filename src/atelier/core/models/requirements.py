"""任务需求 tagged variants

需求在边界处以 JSON 提交，按 kind 字段解析为具体的分类模型。
kind 与任务分类 slug 对应；generic 适用于任意分类。
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


class _RequirementsBase(BaseModel):
    title: str = Field(min_length=1, max_length=200, description="任务标题")
    description: str = Field(default="", max_length=10_000, description="需求描述")
    style_references: list[str] = Field(default_factory=list, description="风格参考链接")
    attachments: list[str] = Field(
        default_factory=list,
        description="附件引用（文件存储返回的 URL/路径，不校验内容）",
    )


class StaticAdsRequirements(_RequirementsBase):
    kind: Literal["static-ads"] = "static-ads"
    dimensions: list[str] = Field(default_factory=list, description="尺寸，如 1080x1080")
    headline: str = Field(default="")
    call_to_action: str = Field(default="")


class VideoMotionRequirements(_RequirementsBase):
    kind: Literal["video-motion"] = "video-motion"
    duration_s: int = Field(gt=0, le=600, description="视频时长（秒）")
    aspect_ratio: str = Field(default="16:9")
    voiceover: bool = Field(default=False)


class SocialMediaRequirements(_RequirementsBase):
    kind: Literal["social-media"] = "social-media"
    platforms: list[str] = Field(min_length=1, description="目标平台")
    post_count: int = Field(default=1, ge=1, le=50)


class GenericRequirements(_RequirementsBase):
    kind: Literal["generic"] = "generic"
    notes: str = Field(default="")


TaskRequirements = Annotated[
    StaticAdsRequirements
    | VideoMotionRequirements
    | SocialMediaRequirements
    | GenericRequirements,
    Field(discriminator="kind"),
]

requirements_adapter: TypeAdapter[TaskRequirements] = TypeAdapter(TaskRequirements)


def matches_category(requirements: _RequirementsBase, category_slug: str) -> bool:
    """需求 kind 是否与任务分类匹配（generic 匹配任意分类）"""
    kind = getattr(requirements, "kind", "generic")
    return kind == "generic" or kind == category_slug

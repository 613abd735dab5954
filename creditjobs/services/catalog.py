"""
Feature catalog: which provider runs a product feature, what it costs in
credits and how long we are willing to poll for it.
"""
from dataclasses import dataclass
from typing import Any

from creditjobs.services.providers.base import JobSpec


@dataclass(frozen=True)
class FeatureConfig:
    name: str
    provider: str
    cost: int
    endpoint: str
    poll_interval: float
    max_wall_clock: float
    jitter: float = 0.0
    description: str = ""

    def build_spec(self, payload: dict[str, Any]) -> JobSpec:
        return JobSpec(
            provider=self.provider,
            payload=payload,
            feature=self.name,
            endpoint=self.endpoint,
            poll_interval=self.poll_interval,
            max_wall_clock=self.max_wall_clock,
            jitter=self.jitter,
        )


_FEATURES = [
    # A2E
    FeatureConfig("face_swap", "a2e", 15, "userFaceSwapTask/add", 3.0, 180.0, description="Face swap (A2E)"),
    FeatureConfig("talking_photo", "a2e", 10, "talkingPhoto/start", 3.0, 120.0, description="Talking photo (A2E)"),
    FeatureConfig("talking_video", "a2e", 75, "video/generate", 3.0, 600.0, jitter=0.2, description="TTS + avatar video (A2E)"),
    FeatureConfig("lipsync", "a2e", 3, "userLipSync/start", 3.0, 120.0, description="Lip sync (A2E)"),
    FeatureConfig("dubbing", "a2e", 3, "userDubbing/startDubbing", 5.0, 300.0, description="Dubbing (A2E)"),
    FeatureConfig("motion_transfer", "a2e", 15, "motionTransfer/start", 5.0, 600.0, description="Motion transfer (A2E)"),
    FeatureConfig("text_to_image", "a2e", 1, "userText2image/start", 2.0, 120.0, description="Text to image (A2E)"),
    FeatureConfig("avatar_video_training", "a2e", 75, "userVideoTwin/startTraining", 15.0, 1200.0, jitter=0.2, description="Video avatar training (A2E)"),
    # AtlasCloud
    FeatureConfig("text_to_video", "atlascloud", 50, "model/generateVideo", 2.0, 300.0, description="Wan 2.6 text to video (AtlasCloud)"),
    FeatureConfig("image_to_video_lora", "atlascloud", 50, "model/generateVideo", 2.0, 300.0, description="Wan I2V with LoRA (AtlasCloud)"),
    FeatureConfig("video_to_video", "atlascloud", 55, "model/generateVideo", 2.0, 300.0, description="Wan V2V (AtlasCloud)"),
    FeatureConfig("video_extend", "atlascloud", 40, "model/generateVideo", 2.0, 300.0, description="Video extend (AtlasCloud)"),
    # Replicate
    FeatureConfig("wan_text_to_video", "replicate", 40, "wan-video/wan-2.2-5b-fast", 3.0, 600.0, description="Wan T2V (Replicate)"),
    FeatureConfig("wan_image_to_video", "replicate", 80, "wan-video/wan-2.2-i2v-fast", 3.0, 600.0, description="Wan I2V (Replicate)"),
    FeatureConfig("storyboard_frame", "replicate", 2, "bytedance/sdxl-lightning-4step", 2.0, 60.0, description="Storyboard frame (Replicate)"),
    # fal
    FeatureConfig("action_lora", "fal", 10, "fal-ai/wan/image-to-video", 3.0, 120.0, description="Action LoRA video (fal)"),
    FeatureConfig("fal_text_to_video", "fal", 10, "fal-ai/wan/text-to-video", 3.0, 300.0, description="Wan T2V (fal)"),
]

FEATURES: dict[str, FeatureConfig] = {f.name: f for f in _FEATURES}


class UnknownFeatureError(KeyError):
    pass


def get_feature(name: str) -> FeatureConfig:
    try:
        return FEATURES[name]
    except KeyError:
        raise UnknownFeatureError(name) from None


def price_for(feature: FeatureConfig, account_id: str, privileged_account_ids: set[str]) -> int:
    """Privileged accounts run every feature at cost 0."""
    if account_id in privileged_account_ids:
        return 0
    return feature.cost

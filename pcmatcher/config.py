"""Configuration for matching and registration."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"

    # Worker count for joblib fan-out (-1 = all cores)
    N_JOBS: int = -1

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def validate_log_level(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return "INFO"
        return v

    @field_validator('N_JOBS', mode='before')
    @classmethod
    def validate_n_jobs(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return -1
        return v

    model_config = {
        "env_prefix": "PCMATCHER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


# Global settings instance
settings = Settings()


class MatchingMode(str, Enum):
    EXHAUSTIVE = "exhaustive"
    OPTIMIZED = "optimized"


class RotationEstimation(str, Enum):
    QUATRO = "QUATRO"
    GNC_TLS = "GNC_TLS"


class MatchingConfig(BaseModel):
    """Options for establishing correspondences between two descriptor sets."""

    use_absolute_scale: bool = True
    use_crosscheck: bool = True
    use_tuple_test: bool = True
    tuple_scale: float = Field(0.95, ge=0.0, le=1.0)
    # Compared against squared descriptor distance as distance_threshold ** 2
    distance_threshold: float = Field(30.0, gt=0.0)
    max_correspondences: int = Field(5000, ge=1)
    mode: MatchingMode = MatchingMode.OPTIMIZED
    use_ratio_test: bool = False
    ratio: float = Field(0.9, gt=0.0, le=1.0)
    n_jobs: int = Field(default_factory=lambda: settings.N_JOBS)
    leaf_size: int = Field(15, ge=1)
    checks: Optional[int] = Field(None, ge=1)

    @field_validator('n_jobs')
    @classmethod
    def validate_n_jobs(cls, v):
        if v == 0:
            raise ValueError("n_jobs must be non-zero")
        return v


class RegistrationConfig(BaseModel):
    """
    Options for the full sample -> extract -> match -> solve pipeline.

    Radii and the noise bound scale with the voxel size unless given
    explicitly: noise_bound = voxel, normal_radius = 3 * voxel,
    fpfh_radius = 5 * voxel.
    """

    voxel_size: float = Field(0.3, gt=0.0)
    use_voxel_sampling: bool = True
    noise_bound: Optional[float] = Field(None, gt=0.0)
    normal_radius: Optional[float] = Field(None, gt=0.0)
    fpfh_radius: Optional[float] = Field(None, gt=0.0)
    rotation_estimation: RotationEstimation = RotationEstimation.GNC_TLS
    max_correspondences: int = Field(5000, ge=1)
    tuple_scale: float = Field(0.95, ge=0.0, le=1.0)
    distance_threshold: float = Field(30.0, gt=0.0)
    mode: MatchingMode = MatchingMode.OPTIMIZED
    use_ratio_test: bool = False
    n_jobs: int = Field(default_factory=lambda: settings.N_JOBS)

    @model_validator(mode='after')
    def fill_voxel_defaults(self):
        # Derived values stay out of model_fields_set so configure() re-derives them
        if self.noise_bound is None:
            object.__setattr__(self, "noise_bound", self.voxel_size)
        if self.normal_radius is None:
            object.__setattr__(self, "normal_radius", 3.0 * self.voxel_size)
        if self.fpfh_radius is None:
            object.__setattr__(self, "fpfh_radius", 5.0 * self.voxel_size)
        return self

    def matching_config(self) -> MatchingConfig:
        """Derive the matcher options from this registration config."""
        return MatchingConfig(
            tuple_scale=self.tuple_scale,
            distance_threshold=self.distance_threshold,
            max_correspondences=self.max_correspondences,
            mode=self.mode,
            use_ratio_test=self.use_ratio_test,
            n_jobs=self.n_jobs,
        )

from .region_contraction import RegionContraction, check_settings, voxel_seed

__all__ = ["RegionContraction", "check_settings", "voxel_seed"]

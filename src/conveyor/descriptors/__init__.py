"""Descriptor sources - where job definitions come from."""

from conveyor.descriptors.protocol import DescriptorSource, StaticDescriptorSource
from conveyor.descriptors.yaml_source import (
    ContainerSpec,
    DescriptorSpec,
    JobSpec,
    YamlDescriptorSource,
    split_script,
)

__all__ = [
    "ContainerSpec",
    "DescriptorSource",
    "DescriptorSpec",
    "JobSpec",
    "StaticDescriptorSource",
    "YamlDescriptorSource",
    "split_script",
]

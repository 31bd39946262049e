# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Slurm job lifecycle tooling: submit, monitor, cancel, and service probes."""

__version__ = "0.3.0"

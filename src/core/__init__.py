# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the StepWise memory core.

This package contains the core business logic:
- config: Application configuration and settings
- intelligence: Embedding and completion providers
- memory: Step buffer, semantic index and context assembly
- personas: Persona roster and routing
- curriculum: Task, subtask and step catalog
"""

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer.

Domain services encapsulate the chat workflow and orchestrate the memory,
persona and curriculum components.

Domains:
    conversation: Tutoring chat with project team personas.
"""

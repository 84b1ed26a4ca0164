"""StepWise memory core.

Tiered conversational memory for a requirements engineering tutoring chat:
step buffers, semantic memory over the learning history, context assembly
and persona routing.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"

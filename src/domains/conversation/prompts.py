# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Prompt builders for the tutoring chat.

- build_standalone_prompt: Rewrites a chat message as a retrieval query
- build_team_member_prompt: System prompt of the answering persona
- build_welcome_prompts: System and user prompt of a step welcome message
"""

from typing import Optional

from src.core.curriculum.catalog import LearningStep, LearningSubtask, LearningTask
from src.core.memory.models import ConversationTurn, TurnRole
from src.core.personas.models import Persona

STANDALONE_PROMPT = """You are an expert at converting conversational questions into clear, standalone questions for information retrieval.

TASK: Convert the user's message into a clear, standalone question that can be used to search for relevant information.

GUIDELINES:
1. Remove conversational noise (greetings, filler words, etc.)
2. Make the question self-contained (no pronouns without clear antecedents)
3. Focus on the core information need
4. Keep the original intent and context
5. If it's already clear and standalone, return it as-is

{history}USER MESSAGE: "{message}"

STANDALONE QUESTION:"""

TEAM_MEMBER_PROMPT = """You are {name}, a {role} with expertise in {expertise}. You follow the INTERACTION GUIDELINES given to you to respond to user queries.

CRITICAL CONSTRAINT: Base your responses on the RELEVANT PROJECT INFORMATION and the student's memory provided below. Do not invent project facts. If the provided context doesn't contain enough information to answer the question, say that you need more project-specific information.

PERSONAL PROFILE:
{detailed_persona}

COMMUNICATION STYLE: {communication_style}
WORK APPROACH: {work_approach}
PREFERRED FRAMEWORKS: {frameworks}

STUDENT'S QUESTION CONTEXT:
Original Question: "{original_question}"
Clarified Question: "{standalone_question}"

RELEVANT PROJECT INFORMATION AND STUDENT MEMORY:
{context}
{notes}{conversation_summary}
CURRENT LEARNING TASK: {task_name}
Task Phase: {task_phase}

YOU ARE CURRENTLY WORKING ON:
STEP: {step}
SUBTASK: {subtask_name} ({subtask_description})
Objective: {objective}
Validation criteria: {criteria}

TEAM COLLEAGUES:
{colleagues}

INTERACTION GUIDELINES:

1. CONTEXT ADHERENCE:
   - Use the project information and the student's previous work above
   - If the context is not enough, say: "Based on the project information I have access to, I don't have enough details to answer that fully. Could you provide more project-specific context?"

2. NATURAL CONVERSATION FLOW:
   - Respond like a real colleague would
   - If greeted casually, respond casually first, then guide the conversation toward the project

3. COLLABORATIVE BRAINSTORMING:
   - DON'T GIVE DIRECT ANSWERS for "{step}" but guide the student to accomplish the objective: {objective}
   - Ask questions that help them explore the provided context

4. COLLEAGUE REFERRALS:
   - When another colleague's expertise is clearly relevant, suggest talking to them by name

5. CONTEXT AWARENESS:
   - Build on earlier conversation and the student's previous work
   - Don't repeat information already covered unless clarification is needed"""

WELCOME_SYSTEM_PROMPT = """You are a Project Guide - a warm, helpful assistant that introduces students to new learning steps.

Your role:
- Welcome the student to the current step
- Clearly explain what they need to do
- Introduce the team member they'll be working with
- Keep the tone encouraging and professional

Current Context:
- Task: {task_name}
- Subtask: {subtask_name}
- Step: {step}
- Objective: {objective}
- Team member the student will work with: {primary_agent}

Communication Style: {communication_style}

Instructions:
1. Start with a brief, friendly welcome
2. Explain the current step's objective clearly
3. Introduce the team member they'll work with
4. Encourage questions and engagement
5. Keep it concise but informative

Relevant project context:
{context}"""

WELCOME_USER_PROMPT = """Create a welcome message for this step. Include:
- What the student will learn or accomplish
- Who they'll be working with
- Any relevant context from previous steps
Keep it engaging but focused."""


def format_history(turns: list[ConversationTurn]) -> str:
    """Render recent turns as ``role: content`` lines."""
    lines = []
    for turn in turns:
        speaker = "human" if turn.role is TurnRole.USER else "ai"
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


def build_standalone_prompt(message: str, recent_turns: list[ConversationTurn]) -> str:
    history = format_history(recent_turns)
    return STANDALONE_PROMPT.format(
        history=f"CONVERSATION CONTEXT:\n{history}\n\n" if history else "",
        message=message,
    )


def build_team_member_prompt(
    persona: Persona,
    colleagues: list[Persona],
    task: LearningTask,
    subtask: LearningSubtask,
    step: LearningStep,
    context: str,
    original_question: str,
    standalone_question: str,
    persona_notes: str = "",
    conversation_summary: Optional[str] = None,
) -> str:
    """Build the system prompt of the answering persona.

    Args:
        persona: The persona answering.
        colleagues: Other team members the persona may refer to.
        task: Current task.
        subtask: Current subtask.
        step: Current step.
        context: Rendered assembled context.
        original_question: The student's message as written.
        standalone_question: The rewritten retrieval query.
        persona_notes: The persona's insight notes about the student.
        conversation_summary: Rolling summary of the step conversation.

    Returns:
        The system prompt.
    """
    colleague_lines = "\n".join(
        f"- {c.name} ({c.role}): {', '.join(c.expertise[:2])}"
        for c in colleagues
        if c.id != persona.id
    )
    return TEAM_MEMBER_PROMPT.format(
        name=persona.name,
        role=persona.role,
        expertise=", ".join(persona.expertise),
        detailed_persona=persona.detailed_persona,
        communication_style=persona.communication_style,
        work_approach=persona.work_approach,
        frameworks=", ".join(persona.preferred_frameworks),
        original_question=original_question,
        standalone_question=standalone_question,
        context=context,
        notes=f"\n{persona_notes}\n" if persona_notes else "",
        conversation_summary=(
            f"\nEARLIER IN THIS STEP:\n{conversation_summary}\n" if conversation_summary else ""
        ),
        task_name=task.name,
        task_phase=task.phase,
        step=step.step,
        subtask_name=subtask.name,
        subtask_description=subtask.description,
        objective=step.objective,
        criteria=", ".join(step.validation_criteria),
        colleagues=colleague_lines,
    )


def build_welcome_prompts(
    guide: Persona,
    primary_agent: str,
    task: LearningTask,
    subtask: LearningSubtask,
    step: LearningStep,
    context: str,
) -> tuple[str, str]:
    """Build the system and user prompt of a step welcome message."""
    system_prompt = WELCOME_SYSTEM_PROMPT.format(
        task_name=task.name,
        subtask_name=subtask.name,
        step=step.step,
        objective=step.objective,
        primary_agent=primary_agent,
        communication_style=guide.communication_style,
        context=context,
    )
    return system_prompt, WELCOME_USER_PROMPT

"""
Prompt builder for AI grading.

Constructs the system instructions and user prompts for every LLM call:
- Essay grading against a rubric, optionally calibrated by a reference example
- Short-answer grading for reading comprehension
- Splitting free-form student text across questions
- Rubric and problem extraction from raw teacher text
"""

import json
from collections.abc import Sequence

from ai_grader.models import Answer, Question, QuestionType, ReferenceExample, RubricItem


def option_label(index: int) -> str:
    """Letter shown to students for the option at a 0-based index (A, B, C, ...)."""
    return chr(ord("A") + index) if index < 26 else str(index + 1)


def format_score(value: float) -> str:
    """Render a score without a trailing '.0' for whole numbers."""
    return f"{value:g}"


class PromptBuilder:
    """
    Builds grading prompts for consistent, rubric-bound evaluation.

    The prompts are designed to:
    1. Keep every score inside the rubric's bounds
    2. Force criterion-by-criterion evaluation
    3. Use reference examples for feedback style only, never for leniency
    4. Produce output matching the requested schema
    """

    ESSAY_SYSTEM_PROMPT = """You are an experienced literature teacher grading student essays.

RULES:
1. Grade strictly against the rubric. Every criterion in the rubric receives exactly one entry in detailedFeedback.
2. Each criterion score MUST be between 0 and that criterion's maximum score. Never exceed the maximum, never go below 0.
3. Justify every score with specific evidence from the essay.
4. Identical essays MUST receive identical scores. Your grading must be reproducible.
5. Write feedback and suggestions in the same language as the assignment.

OUTPUT RULES:
- Respond with JSON matching the provided schema only. Do not add any text before or after the JSON."""

    READING_SYSTEM_PROMPT = """You are an experienced teacher grading short answers to reading-comprehension questions.

RULES:
1. Compare each answer with the question's grading criteria.
2. Award a score between 0 and the question's maximum score, in proportion to how completely the criteria are met.
3. Give a one or two sentence rationale per question.
4. Every listed question receives exactly one entry in detailedFeedback with its questionId.
5. Write feedback in the same language as the passage.

OUTPUT RULES:
- Respond with JSON matching the provided schema only."""

    DISTRIBUTION_SYSTEM_PROMPT = """You are a study assistant. You receive one block of text in which a student answered several questions at once.
Split the text and assign each answer to the matching question id.

RULES:
- Multiple-choice questions: find which option the student chose (a letter such as A, B, C, D, or the option's text) and return the matching option id as selectedOptionId.
- Short-answer questions: copy the passage of the student's text that answers the question into writtenAnswer.
- Use question numbering (e.g. "1.", "Câu 2") and keywords from the questions to match answers.
- If a question has no clear answer in the text, leave it out.

OUTPUT RULES:
- Respond with JSON matching the provided schema only: a list of {questionId, selectedOptionId?, writtenAnswer?}."""

    RUBRIC_SYSTEM_PROMPT = """Extract the grading rubric into a list of criteria, each with its maximum score.
Use the score figures written in the rubric (e.g. 0.5đ, 1.0 điểm, 10 points). Do not invent criteria.
Respond with JSON matching the provided schema only."""

    SMART_EXTRACT_SYSTEM_PROMPT = """You are an expert at writing literature exams.
You receive a mixed block of text that may contain an essay prompt, a reading passage, a list of questions, and a marking guide. Restructure it.

CLASSIFICATION:
1. reading_comprehension: a passage followed by several short questions (multiple choice or short answer).
2. essay: a request to write one long essay on a topic, usually with a detailed marking scheme.

EXTRACTION:
- title: a short, descriptive title for the assignment.
- Scores: find the score figures (e.g. 0.5đ, 1.0 điểm) and assign them to maxScore.
- Multiple choice: identify the correct option from markers such as an asterisk, bold text, or an attached answer key.
- Short answer: put the model answer or marking criteria into gradingCriteria.

Respond with JSON matching the provided schema only."""

    @staticmethod
    def build_essay_prompt(
        prompt: str,
        essay: str,
        rubric_items: Sequence[RubricItem],
        raw_rubric: str | None,
        max_score: float,
        reference_example: ReferenceExample | None = None,
    ) -> str:
        """
        Build the user prompt for essay grading.

        Args:
            prompt: The assignment prompt.
            essay: The student's essay.
            rubric_items: Structured criteria with their maximum scores (may be empty).
            raw_rubric: Free-text rubric; preferred over the structured items when present.
            max_score: Scale the final total is reported on.
            reference_example: Teacher-corrected example used to calibrate feedback style.

        Returns:
            The formatted user prompt.
        """
        sections: list[str] = []

        if reference_example is not None:
            sections.append(PromptBuilder._format_reference(reference_example))

        sections.append(f"ASSIGNMENT PROMPT:\n{prompt}")
        sections.append(PromptBuilder._format_rubric(rubric_items, raw_rubric))
        sections.append(
            "STUDENT ESSAY:\n---BEGIN ESSAY---\n" f"{essay}\n" "---END ESSAY---"
        )
        sections.append(
            "INSTRUCTIONS:\n"
            "1. Evaluate the essay against EACH criterion independently.\n"
            "2. For each criterion, award a score between 0 and its maximum score.\n"
            "3. Explain each score with evidence from the essay.\n"
            "4. totalScore is the sum of criterion scores; maxScore is the sum of criterion maxima.\n"
            f"5. The final grade will be converted to a {format_score(max_score)}-point scale.\n"
            "6. Add a few concrete generalSuggestions for improvement."
        )

        return "\n\n".join(sections)

    @staticmethod
    def build_short_answer_prompt(
        passage: str | None,
        questions: Sequence[tuple[Question, Answer]],
    ) -> str:
        """
        Build the user prompt for grading short answers.

        Args:
            passage: The reading passage, if any.
            questions: Pairs of short-answer question and the student's answer.

        Returns:
            The formatted user prompt.
        """
        lines: list[str] = []
        if passage:
            lines.extend(["PASSAGE:", passage, ""])

        lines.append("QUESTIONS AND STUDENT ANSWERS:")
        for question, answer in questions:
            lines.append(f"- questionId: {question.id}")
            lines.append(f"  Question: {question.question_text}")
            lines.append(f"  Maximum score: {format_score(question.effective_max_score)}")
            lines.append(f"  Grading criteria: {question.grading_criteria or '(none given; judge correctness)'}")
            lines.append(f"  Student answer: {(answer.written_answer or '').strip()}")
            lines.append("")

        return "\n".join(lines).rstrip()

    @staticmethod
    def build_distribution_prompt(raw_text: str, questions: Sequence[Question]) -> str:
        """
        Build the user prompt for splitting free text across questions.

        Args:
            raw_text: The student's unstructured answers.
            questions: Ordered question list.

        Returns:
            The formatted user prompt.
        """
        question_list = []
        for number, question in enumerate(questions, start=1):
            entry: dict[str, object] = {
                "number": number,
                "questionId": question.id,
                "questionType": question.question_type.value,
                "questionText": question.question_text,
            }
            if question.question_type == QuestionType.MULTIPLE_CHOICE:
                entry["options"] = [
                    {"label": option_label(i), "optionId": option.id, "text": option.text}
                    for i, option in enumerate(question.options)
                ]
            question_list.append(entry)

        return (
            f'STUDENT TEXT:\n"""{raw_text}"""\n\n'
            f"QUESTIONS:\n{json.dumps(question_list, ensure_ascii=False, indent=2)}"
        )

    @staticmethod
    def build_rubric_prompt(raw_rubric: str) -> str:
        """Build the user prompt for rubric extraction."""
        return f'RUBRIC:\n"""{raw_rubric}"""'

    @staticmethod
    def build_smart_extract_prompt(raw_content: str) -> str:
        """Build the user prompt for problem extraction."""
        return f'Analyze and restructure the following text:\n\n"""{raw_content}"""'

    @staticmethod
    def _format_reference(example: ReferenceExample) -> str:
        """Format the calibration example with its usage constraints."""
        lines = [
            "REFERENCE EXAMPLE (teacher-corrected grading of another student's essay):",
            "Use this example ONLY to calibrate the style, tone and level of detail of your feedback.",
            "Do NOT relax the rubric because of it, and do NOT raise scores because the example scored high.",
            "Grade the new essay strictly on its own merits against the rubric.",
            "",
            "---BEGIN EXAMPLE ESSAY---",
            example.essay,
            "---END EXAMPLE ESSAY---",
            "",
            "EXAMPLE FEEDBACK:",
            json.dumps(example.feedback.to_json_dict(), ensure_ascii=False, indent=2),
        ]
        return "\n".join(lines)

    @staticmethod
    def _format_rubric(rubric_items: Sequence[RubricItem], raw_rubric: str | None) -> str:
        """Format the rubric, preferring the teacher's free text."""
        lines: list[str] = []

        if raw_rubric and raw_rubric.strip():
            lines.append("RUBRIC:")
            lines.append(raw_rubric.strip())
        elif rubric_items:
            lines.append("RUBRIC:")
            for i, item in enumerate(rubric_items, start=1):
                lines.append(f"{i}. {item.criterion} ({format_score(item.max_score)} points)")
        else:
            lines.append("RUBRIC: none provided. Use standard essay criteria (content, organization, expression).")

        if raw_rubric and rubric_items:
            lines.append("")
            lines.append("CRITERIA TO SCORE (use these exact names and maxima):")
            for item in rubric_items:
                lines.append(f"- {item.criterion}: max {format_score(item.max_score)}")

        return "\n".join(lines)

"""
Prompts for the curriculum synthesis agents.

Every JSON-returning prompt states its schema inline; responses are parsed
leniently (fences and surrounding prose are tolerated).
"""

import json
from typing import Dict, List, Mapping, Sequence


def _lock(shared_dictionary: Mapping[str, str]) -> str:
    return json.dumps(dict(shared_dictionary), ensure_ascii=False)


class SynthesisPrompts:

    @staticmethod
    def curriculum_planner(
        topic: str,
        understanding: str,
        persona_instruction: str,
        chapter_count: int,
    ) -> str:
        return f"""
You are a world-class instructional designer. Create a detailed curriculum for a deep-dive course on: "{topic}".
Target Level: {understanding}
Persona: {persona_instruction}
Target length: Approximately {chapter_count} chapters.

TASK:
1. Generate a professional name and a 3-5 sentence HTML summary.
2. Design a sequence of {chapter_count} chapters.
3. For each chapter, provide a unique 'id' (e.g., 'chap-intro'), a title, learning objectives and a list of sub-topics.
4. Define prerequisites using 'prerequisiteChapterIds'. Only reference ids that exist in this curriculum.
5. Generate a "sharedDictionary" of 10-20 core technical terms and their canonical definitions. It is the terminology lock every chapter must follow.

JSON SCHEMA:
{{
    "name": "Course Title",
    "description": "Full course summary (HTML)",
    "sharedDictionary": {{ "TermA": "Definition A" }},
    "chapters": [
        {{
            "id": "chap-1",
            "title": "Chapter Title",
            "learningObjectives": ["Obj 1"],
            "topics": ["Topic A"],
            "prerequisiteChapterIds": []
        }}
    ]
}}
""".strip()

    @staticmethod
    def state_vector(
        topic: str,
        prerequisite_summaries: Mapping[str, str],
        shared_dictionary: Mapping[str, str],
    ) -> str:
        summaries = "\n\n".join(
            f"[{chapter_id}] {summary}" for chapter_id, summary in prerequisite_summaries.items()
        ) or "(no prerequisite chapters)"
        return f"""
You are an Educational Archivist. Review the summaries of chapters already completed in a course on "{topic}".

SHARED TERMINOLOGY LOCK:
{_lock(shared_dictionary)}

CHAPTER SUMMARIES:
{summaries}

TASK:
Generate a concise "Logical State Vector": a dense summary of
1. Core concepts already defined.
2. Prerequisites established.
3. Narrative threads or case studies introduced.

It is fed to the next chapter's author to prevent redundant introductions.

OUTPUT: Return only the plain text summary (max 500 words).
""".strip()

    @staticmethod
    def chapter_draft(
        topic: str,
        *,
        title: str,
        learning_objectives: Sequence[str],
        topics: Sequence[str],
        chapter_index: int,
        total_chapters: int,
        persona_name: str,
        persona_instruction: str,
        target_chapter_words: int,
        shared_dictionary: Mapping[str, str],
        state_vector: str,
    ) -> str:
        return f"""
Act as a subject matter expert with the following persona: {persona_name}.
Persona Instructions: {persona_instruction}

COURSE TOPIC: "{topic}"
CHAPTER {chapter_index + 1}/{total_chapters}: "{title}"
LEARNING OBJECTIVES: {", ".join(learning_objectives)}
TOPICS TO COVER: {", ".join(topics)}

TERMINOLOGY LOCK (you MUST adhere to these definitions):
{_lock(shared_dictionary)}

COURSE PROGRESS STATE (what has already been covered):
{state_vector or "(nothing yet)"}

TASK:
Write the full, detailed text for this chapter. Target word count: {target_chapter_words} words.

REQUIREMENTS:
1. Use rich HTML formatting (h2, h3 headers, bold key terms, blockquotes for principles).
2. Dense and informative, flowing like a high-quality textbook.
3. Do not re-introduce concepts from the COURSE PROGRESS STATE unless deepening them.

OUTPUT FORMAT: Return raw HTML content. Do NOT wrap it in JSON.
""".strip()

    @staticmethod
    def finalize_chapter(
        topic: str,
        title: str,
        draft: str,
        state_vector: str,
        shared_dictionary: Mapping[str, str],
    ) -> str:
        return f"""
You are the final editor of the chapter "{title}" in a course on "{topic}".

TERMINOLOGY LOCK:
{_lock(shared_dictionary)}

COURSE PROGRESS STATE:
{state_vector or "(nothing yet)"}

DRAFT:
{draft}

TASK:
1. Clean the draft into well-formed HTML, keeping its substance and tone.
2. Make every technical term match the terminology lock.
3. Write a one-paragraph summary of what the chapter covered, for the archivist building the next chapter's state.

JSON SCHEMA:
{{
    "content": "Full HTML Content Here...",
    "summaryForArchivist": "One paragraph."
}}
""".strip()

    @staticmethod
    def verify_content(topic: str, chapter_title: str, content: str) -> str:
        return f"""
You are a Fact-Checker. Analyze this chapter about "{chapter_title}" in a course on "{topic}".

CONTENT:
{content}

TASK:
1. Verify every technical, historical, and scientific claim, using Google Search when it is available.
2. Identify inaccuracies, oversimplifications, or hallucinations.
3. List the required corrections, with sources where possible.

JSON SCHEMA:
{{
    "isAccurate": true,
    "corrections": [
        {{ "originalClaim": "...", "correction": "...", "source": "..." }}
    ],
    "overallQualityScore": 8
}}
""".strip()

    @staticmethod
    def refine_content(topic: str, content: str, corrections: List[Dict]) -> str:
        return f"""
Refine the following educational content about "{topic}" by applying the verified corrections provided.

ORIGINAL CONTENT:
{content}

CORRECTIONS TO APPLY:
{json.dumps(corrections, ensure_ascii=False)}

TASK:
Rewrite the content to be factually accurate while keeping the original tone and formatting.

JSON SCHEMA:
{{
    "refinedContent": "Full HTML..."
}}
""".strip()

    @staticmethod
    def diagram(topic: str, content: str) -> str:
        return f"""
Based on the following educational content about "{topic}", identify ONE process, structure, or system that needs a visual aid.

CONTENT:
{content}

TASK:
1. Design a factual, clean, pedagogical SVG diagram (process flow, structural diagram, or timeline).
2. Assign descriptive id attributes to every major component or group.
3. If nothing in the text benefits from a diagram, set hasDiagram to false.

JSON SCHEMA:
{{
    "hasDiagram": true,
    "svgCode": "<svg ...>...</svg>",
    "caption": "Factual description of the diagram"
}}
""".strip()

    @staticmethod
    def assessments(topic: str, chapter_title: str, content: str) -> str:
        return f"""
You are a pedagogical auditor. Analyze the following chapter from a course on "{topic}".
CHAPTER TITLE: "{chapter_title}"
CONTENT:
{content}

TASK 1: GENERATE QUESTIONS
Generate 3-5 challenging multiple-choice questions that test the nuances presented in the text.
Classify each question with Bloom's Taxonomy: 'Recall', 'Comprehension', 'Application', 'Analysis', 'Synthesis', or 'Evaluation'. Mix the levels.

TASK 2: QUALITY PASS
Return the HTML content with key terms consistently bolded and headers logically nested.

JSON SCHEMA:
{{
    "refinedContent": "...",
    "questions": [
        {{
            "questionText": "...",
            "bloomsLevel": "Recall",
            "options": [{{ "id": "o1", "text": "...", "explanation": "..." }}],
            "correctAnswerId": "o1",
            "detailedExplanation": "..."
        }}
    ]
}}
""".strip()

    @staticmethod
    def global_audit(
        topic: str,
        course_name: str,
        chapter_excerpts: Mapping[str, str],
        shared_dictionary: Mapping[str, str],
    ) -> str:
        skeleton = "\n\n".join(
            f"Chapter {position} [{chapter_id}]: {excerpt}..."
            for position, (chapter_id, excerpt) in enumerate(chapter_excerpts.items(), start=1)
        )
        return f"""
You are a Master Epistemic Auditor. Review the following synthesized course on "{topic}".

COURSE NAME: "{course_name}"
TERMINOLOGY LOCK: {_lock(shared_dictionary)}

CHAPTER EXCERPTS:
{skeleton}

TASK:
1. Check consistent use of technical terminology across all chapters.
2. Identify logical contradictions between chapters.
3. Check thematic cohesion and narrative flow.
4. For each issue, suggest a fix for one specific chapter, using the chapter id shown in brackets.

JSON SCHEMA:
{{
    "isConsistent": true,
    "suggestions": [
        {{ "chapterId": "string", "issue": "string", "fix": "string" }}
    ],
    "finalSummary": "Final verdict on course quality."
}}
""".strip()

    @staticmethod
    def apply_audit_fix(topic: str, content: str, issue: str, fix: str) -> str:
        return f"""
Refine the following educational text about "{topic}" based on a global consistency audit.

ORIGINAL TEXT:
{content}

AUDIT ISSUE: {issue}
REQUIRED FIX: {fix}

TASK:
Rewrite the text to resolve the issue while keeping style, formatting, and all pedagogical elements (diagrams, etc).

JSON SCHEMA:
{{
    "refinedContent": "Full HTML..."
}}
""".strip()

"""
AI service: the operations the rest of the application calls.

Each operation builds the provider priority list from the caller's
credentials plus the injected fallback credential, turns its prompt into one
unit of work per provider, and hands that to the FallbackOrchestrator.
Curriculum lookups additionally go through the two-tier result cache and fall
back to static lists when no provider can answer.

Errors:
- AIServiceError subclasses only; OperationCancelledError is always
  propagated, never converted into a default value
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from eduquest.core.cache import InMemoryCacheClient
from eduquest.core.config import Settings, get_settings
from eduquest.core.logging import get_logger, set_feature
from eduquest.services.ai.cache import (
    CurriculumKey,
    EphemeralTier,
    TwoTierResultCache,
)
from eduquest.services.ai.cancellation import CancellationToken
from eduquest.services.ai.defaults import DEFAULT_CHAPTERS, DEFAULT_SUBJECTS
from eduquest.services.ai.errors import (
    AIServiceError,
    AllProvidersExhaustedError,
    InvalidInputError,
    MalformedResponseError,
    NoCredentialsConfiguredError,
    OperationCancelledError,
)
from eduquest.services.ai.llm_client import Attachment, BaseLLMClient, create_client
from eduquest.services.ai.orchestration import FallbackOrchestrator
from eduquest.services.ai.providers import ProviderDescriptor, ProviderKind, build_priority_list
from eduquest.services.ai.retry import RetryController
from eduquest.services.ai.schema import (
    DIAGRAM_SUGGESTIONS_SCHEMA,
    EXTRACTED_QUESTIONS_SCHEMA,
    FLASHCARDS_SCHEMA,
    GENERATED_QUESTIONS_SCHEMA,
    PRACTICE_SUGGESTIONS_SCHEMA,
    STRING_LIST_SCHEMA,
    TEST_ANALYSIS_SCHEMA,
    AttemptedQuestion,
    DiagramSuggestion,
    ExtractedQuestion,
    Flashcard,
    GeneratedQuestion,
    PracticeSuggestion,
    QuestionCriteria,
    TestAnalysis,
    language_name,
    parse_json_payload,
    validate_list,
    validate_object,
    validate_string_list,
)

logger = get_logger(__name__)

ClientFactory = Callable[[ProviderDescriptor], BaseLLMClient]
Parser = Callable[[str], Any]

PDF_QUOTA_MESSAGE = (
    "PDF processing failed due to API quota limits. "
    "Please check your key in Settings or try again later."
)
PDF_NO_CREDENTIALS_MESSAGE = (
    "A Google Gemini API Key is not configured for PDF processing. "
    "Please add one in Settings."
)
IMAGE_ONLY_QUERY = "Please analyze the attached image."

ANSWERED_QUESTION_TYPES = {
    "Multiple Choice",
    "Fill in the Blanks",
    "True/False",
    "Odd Man Out",
    "Matching",
}

QUESTION_FORMAT_INSTRUCTIONS = {
    "Multiple Choice": (
        "Each question MUST be a multiple-choice question with exactly 4 distinct options, "
        'labeled A, B, C, and D. The "text" field contains the question followed by the '
        'options; the "answer" field contains ONLY the capital letter of the correct option.'
    ),
    "Fill in the Blanks": (
        "Each question MUST be a fill-in-the-blanks question using ____ for the blank. "
        'The "answer" field contains the word or phrase that fills the blank.'
    ),
    "True/False": (
        'Each question MUST be a statement answered with "True" or "False". '
        'The "answer" field is either "True" or "False".'
    ),
    "Odd Man Out": (
        "Each question MUST list 4-5 items where one does not belong. "
        'The "answer" field names the odd item with a brief justification.'
    ),
    "Matching": (
        "Each question MUST be a matching question with Column A and Column B of 4-5 items each. "
        'The "answer" field lists the correct pairs.'
    ),
}


def _board_for_class(class_num: int) -> str:
    if class_num >= 11:
        return "West Bengal Council of Higher Secondary Education (WBCHSE)"
    return "West Bengal Board of Secondary Education (WBBSE)"


def _questions_schema(require_answer: bool) -> Dict[str, Any]:
    if not require_answer:
        return GENERATED_QUESTIONS_SCHEMA
    items = dict(GENERATED_QUESTIONS_SCHEMA["items"])
    items["required"] = ["text", "answer"]
    return {"type": "ARRAY", "items": items}


def _parse_string_list(text: str) -> List[str]:
    return validate_string_list(parse_json_payload(text))


def _image_attachments(image_data_url: str, feature: str) -> List[Attachment]:
    try:
        attachment = Attachment.from_data_url(image_data_url)
    except ValueError as e:
        raise InvalidInputError(str(e), feature=feature) from e
    if not attachment.mime_type.startswith("image/"):
        raise InvalidInputError(f"Expected an image, got {attachment.mime_type}.", feature=feature)
    return [attachment]


def _doubt_attachments(text: Optional[str], image_data_url: Optional[str], feature: str) -> List[Attachment]:
    if not image_data_url:
        if not (text or "").strip():
            raise InvalidInputError("Ask a question or attach an image.", feature=feature)
        return []
    return _image_attachments(image_data_url, feature)


def _parse_text(text: str) -> str:
    text = text.strip()
    if not text:
        raise MalformedResponseError("AI returned an empty answer.")
    return text


class AIService:
    """Entry point for every AI-backed feature."""

    def __init__(
        self,
        settings: Settings,
        orchestrator: Optional[FallbackOrchestrator] = None,
        cache: Optional[TwoTierResultCache] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.settings = settings
        self._orchestrator = orchestrator or FallbackOrchestrator(
            retry=RetryController(
                base_delay_seconds=settings.backoff_base_seconds,
                max_jitter_seconds=settings.backoff_jitter_seconds,
            ),
            default_deadline_seconds=settings.operation_timeout_seconds,
            default_max_attempts=settings.max_attempts,
        )
        self._cache = cache or TwoTierResultCache(
            EphemeralTier(InMemoryCacheClient()),
            ephemeral_ttl_seconds=settings.ephemeral_ttl_seconds,
            durable_stale_seconds=settings.durable_stale_seconds,
        )
        self._client_factory = client_factory or (lambda provider: create_client(provider, settings))

    def _providers(
        self,
        primary_credential: Optional[str],
        secondary_credential: Optional[str],
        allowed_kinds: Optional[Iterable[ProviderKind]] = None,
    ) -> List[ProviderDescriptor]:
        return build_priority_list(
            primary_credential,
            secondary_credential,
            self.settings.fallback_api_key,
            allowed_kinds=allowed_kinds,
        )

    def _work_factory(
        self,
        prompt: str,
        parse: Parser,
        *,
        response_schema: Optional[Dict[str, Any]] = None,
        json_output: bool = True,
        attachments: Sequence[Attachment] = (),
        primary_model: Optional[str] = None,
    ) -> Callable[[ProviderDescriptor], Callable[[], Any]]:
        def factory(provider: ProviderDescriptor) -> Callable[[], Any]:
            client = self._client_factory(provider)
            model = primary_model if provider.kind is ProviderKind.PRIMARY else None

            async def work() -> Any:
                text = await client.generate(
                    prompt,
                    response_schema=response_schema,
                    json_output=json_output,
                    attachments=attachments,
                    model=model,
                )
                return parse(text)

            return work

        return factory

    async def _run(
        self,
        feature: str,
        providers: Sequence[ProviderDescriptor],
        factory: Callable[[ProviderDescriptor], Callable[[], Any]],
        token: Optional[CancellationToken],
        *,
        deadline_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> Any:
        set_feature(feature)
        try:
            return await self._orchestrator.run(
                providers,
                factory,
                feature,
                token,
                deadline_seconds=deadline_seconds,
                max_attempts=max_attempts,
            )
        finally:
            set_feature(None)

    async def list_subjects(
        self,
        board: str,
        class_num: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Subjects offered by a board for a class; static defaults when unavailable."""
        prompt = (
            "You are an expert on educational syllabi. List all academic subjects for the "
            "given curriculum.\n"
            f"- Board: {board}\n- Class: {class_num}\n"
            f"- Language of subject names: {language_name(lang)}\n"
            "Return ONLY a JSON array of strings."
        )

        async def compute() -> List[str]:
            providers = self._providers(primary_credential, secondary_credential)
            return await self._run(
                "Subject List Generation",
                providers,
                self._work_factory(prompt, _parse_string_list, response_schema=STRING_LIST_SCHEMA),
                token,
                max_attempts=self.settings.curriculum_max_attempts,
            )

        try:
            return await self._cache.resolve(CurriculumKey.subjects(board, class_num, lang), compute, token=token)
        except OperationCancelledError:
            raise
        except AIServiceError as e:
            logger.warning(
                "subjects_defaults_used",
                board=board,
                class_num=class_num,
                error=str(e),
                error_type=type(e).__name__,
            )
            return list(DEFAULT_SUBJECTS)

    async def list_chapters(
        self,
        board: str,
        class_num: int,
        subject: str,
        lang: str,
        semester: Optional[str] = None,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Chapters of a subject; the class's default chapters (or []) when unavailable."""
        semester_line = f"- Semester: {semester}\n" if semester else ""
        prompt = (
            "You are an expert on educational syllabi. List all chapters for a specific "
            "subject and curriculum.\n"
            f"- Board: {board}\n- Class: {class_num}\n- Subject: {subject}\n{semester_line}"
            f"- Language of chapter names: {language_name(lang)}\n"
            "Return ONLY a JSON array of chapter names in syllabus order."
        )

        async def compute() -> List[str]:
            providers = self._providers(primary_credential, secondary_credential)
            return await self._run(
                "Chapter List Generation",
                providers,
                self._work_factory(prompt, _parse_string_list, response_schema=STRING_LIST_SCHEMA),
                token,
                max_attempts=self.settings.curriculum_max_attempts,
            )

        key = CurriculumKey.chapters(board, class_num, subject, lang)
        try:
            return await self._cache.resolve(key, compute, token=token)
        except OperationCancelledError:
            raise
        except AIServiceError as e:
            logger.warning(
                "chapters_defaults_used",
                board=board,
                class_num=class_num,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return list(DEFAULT_CHAPTERS.get(class_num, []))

    async def generate_questions(
        self,
        criteria: QuestionCriteria,
        existing_questions: Sequence[str] = (),
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[GeneratedQuestion]:
        """Generate new exam questions that do not repeat `existing_questions`."""
        require_answer = criteria.generate_answer or criteria.question_type in ANSWERED_QUESTION_TYPES
        question_type = criteria.question_type or "Short Answer"
        format_instruction = QUESTION_FORMAT_INSTRUCTIONS.get(
            question_type, f'Each question must be of the type: "{question_type}".'
        )
        if require_answer:
            output_instruction = 'Each object has two required fields: "text" and "answer".'
        else:
            output_instruction = 'Each object has one required field: "text". Do not include an "answer" field.'
        previous = "\n".join(f"- {text}" for text in list(existing_questions)[:50]) or "None"
        keywords = (
            f"- The questions must incorporate or relate to these keywords: {criteria.keywords}\n"
            if criteria.keywords else ""
        )

        prompt = (
            f"You are an expert in creating question papers for the {_board_for_class(criteria.class_num)} "
            f"curriculum. Generate {criteria.count} unique, high-quality questions.\n"
            f"All text MUST be in the {language_name(criteria.lang)} language.\n\n"
            f"Criteria:\n- Class: {criteria.class_num}\n- Chapter: \"{criteria.chapter}\"\n"
            f"- Marks for each question: {criteria.marks}\n- Difficulty: {criteria.difficulty}\n"
            f"- {format_instruction}\n{keywords}\n"
            f"Do NOT repeat any of these questions:\n{previous}\n\n"
            f"Return ONLY a valid JSON array of objects. {output_instruction}"
        )

        def parse(text: str) -> List[GeneratedQuestion]:
            questions = validate_list(parse_json_payload(text), GeneratedQuestion)
            if not require_answer:
                questions = [question.model_copy(update={"answer": None}) for question in questions]
            return questions

        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Question Generation",
            providers,
            self._work_factory(prompt, parse, response_schema=_questions_schema(require_answer)),
            token,
        )

    async def analyze_test_attempt(
        self,
        attempted: Sequence[AttemptedQuestion],
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> TestAnalysis:
        """Strengths, weaknesses and a summary for one test attempt."""
        lines = []
        for index, question in enumerate(attempted, start=1):
            lines.append(
                f"Q{index} ({question.chapter or 'General'}): {question.text}\n"
                f"  Correct answer: {question.correct_answer or 'N/A'}\n"
                f"  Student answer: {question.student_answer or 'Not answered'}"
            )
        prompt = (
            f"You are a helpful biology tutor. Analyze a student's test performance in "
            f"{language_name(lang)}.\nTest Data:\n" + "\n".join(lines) + "\n"
            'Return ONLY a single valid JSON object with "strengths" (array of strings), '
            '"weaknesses" (array of strings), and "summary" (string).'
        )

        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Test Analysis",
            providers,
            self._work_factory(
                prompt,
                lambda text: validate_object(parse_json_payload(text), TestAnalysis),
                response_schema=TEST_ANALYSIS_SCHEMA,
            ),
            token,
        )

    async def generate_flashcards(
        self,
        chapter: str,
        class_num: int,
        count: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Flashcard]:
        prompt = (
            f'Generate {count} flashcards for Class {class_num} on "{chapter}" in '
            f"{language_name(lang)}. Output a valid JSON array of objects, each with a "
            '"question" and "answer" key.'
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Flashcard Generation",
            providers,
            self._work_factory(
                prompt,
                lambda text: validate_list(parse_json_payload(text), Flashcard, allow_empty=False),
                response_schema=FLASHCARDS_SCHEMA,
            ),
            token,
        )

    async def extract_questions_from_text(
        self,
        text: str,
        class_num: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[ExtractedQuestion]:
        """Pull the distinct questions out of pasted exam-paper text."""
        prompt = (
            "You are an expert at analyzing text. Extract all distinct questions from the "
            f"provided text from an exam paper. The paper is for Class {class_num} and is in "
            f"the {language_name(lang)} language.\n"
            '- Return a JSON array of objects with "text" (string) and optional "marks" (number).\n'
            "- If the text contains no questions, return an empty array.\n\n"
            f"Text:\n{text}"
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Text Question Extraction",
            providers,
            self._work_factory(
                prompt,
                lambda raw: validate_list(parse_json_payload(raw), ExtractedQuestion),
                response_schema=EXTRACTED_QUESTIONS_SCHEMA,
            ),
            token,
        )

    async def extract_questions_from_pdf(
        self,
        pdf_bytes: bytes,
        class_num: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[ExtractedQuestion]:
        """
        Extract questions from a PDF exam paper.

        Only the primary family accepts PDF input, so secondary credentials
        are ignored here. Runs with the document deadline.

        Raises:
            NoCredentialsConfiguredError: no primary-family credential
            AllProvidersExhaustedError: quota-class exhaustion carries
                PDF_QUOTA_MESSAGE
        """
        feature = "PDF Question Extraction"
        try:
            providers = self._providers(
                primary_credential,
                secondary_credential,
                allowed_kinds=[ProviderKind.PRIMARY],
            )
        except NoCredentialsConfiguredError as e:
            raise NoCredentialsConfiguredError(PDF_NO_CREDENTIALS_MESSAGE, feature=feature) from e

        prompt = (
            "You are an expert at analyzing PDF documents. Extract all distinct questions from "
            f"the provided PDF of an exam paper. The paper is for Class {class_num} and is in "
            f"the {language_name(lang)} language. The PDF may have multiple pages.\n"
            '- Return a JSON array of objects with "text" (string) and optional "marks" (number).\n'
            "- If the PDF is not a question paper, is password-protected, or is unreadable, "
            "return an empty array."
        )
        factory = self._work_factory(
            prompt,
            lambda raw: validate_list(parse_json_payload(raw), ExtractedQuestion),
            response_schema=EXTRACTED_QUESTIONS_SCHEMA,
            attachments=[Attachment(mime_type="application/pdf", data=pdf_bytes)],
            primary_model=self.settings.gemini_pro_model,
        )

        try:
            return await self._run(
                feature,
                providers,
                factory,
                token,
                deadline_seconds=self.settings.document_timeout_seconds,
            )
        except AllProvidersExhaustedError as e:
            if not e.is_rate_limited:
                raise
            raise AllProvidersExhaustedError(
                PDF_QUOTA_MESSAGE,
                last_error=e.last_error,
                feature=feature,
                provider=e.provider,
            ) from e

    async def extract_questions_from_image(
        self,
        image_data_url: str,
        class_num: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[ExtractedQuestion]:
        """Pull the questions out of a photo or scan of an exam paper."""
        feature = "Image Question Extraction"
        attachments = _image_attachments(image_data_url, feature)
        prompt = (
            f"Extract all questions from the image of an exam paper for Class {class_num} in "
            f"{language_name(lang)}. Return a valid JSON array of objects, each with \"text\" "
            '(string) and optional "marks" (number).'
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            feature,
            providers,
            self._work_factory(
                prompt,
                lambda raw: validate_list(parse_json_payload(raw), ExtractedQuestion),
                response_schema=EXTRACTED_QUESTIONS_SCHEMA,
                attachments=attachments,
            ),
            token,
        )

    async def answer_doubt(
        self,
        class_num: int,
        lang: str,
        text: Optional[str] = None,
        image_data_url: Optional[str] = None,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Markdown explanation for a student's question, typed or photographed."""
        feature = "Doubt Answering"
        attachments = _doubt_attachments(text, image_data_url, feature)
        prompt = (
            f"You are a friendly and encouraging biology tutor for a Class {class_num} student. "
            f"Answer the student's doubt clearly and simply in {language_name(lang)}. "
            f"Use Markdown for formatting.\nStudent's doubt: {text or IMAGE_ONLY_QUERY}"
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            feature,
            providers,
            self._work_factory(prompt, _parse_text, json_output=False, attachments=attachments),
            token,
        )

    async def answer_teacher_doubt(
        self,
        class_num: int,
        lang: str,
        text: Optional[str] = None,
        image_data_url: Optional[str] = None,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Detailed, teacher-level explanation for a teacher's query."""
        feature = "Teacher Doubt Answering"
        attachments = _doubt_attachments(text, image_data_url, feature)
        prompt = (
            f"You are an expert biology teaching assistant for a Class {class_num} teacher. "
            f"A teacher has a query in {language_name(lang)}. Provide a clear, detailed, and "
            "pedagogically sound explanation suitable for a teacher. Use Markdown for "
            f"formatting.\nTeacher's query: {text or IMAGE_ONLY_QUERY}"
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            feature,
            providers,
            self._work_factory(prompt, _parse_text, json_output=False, attachments=attachments),
            token,
        )

    async def generate_study_guide(
        self,
        chapter: str,
        class_num: int,
        topic: str,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> str:
        prompt = (
            f'Create a concise study guide for a Class {class_num} student on "{topic}" from '
            f'the chapter "{chapter}" in {language_name(lang)}. Format it well with Markdown.'
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Study Guide Generation",
            providers,
            self._work_factory(prompt, _parse_text, json_output=False),
            token,
        )

    async def suggest_practice_sets(
        self,
        analyses: Iterable[TestAnalysis],
        class_num: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[PracticeSuggestion]:
        """
        Up to three practice topics targeting the weaknesses found across
        past test analyses.

        Returns [] without calling any backend when no weaknesses are known.
        """
        weaknesses: List[str] = []
        for analysis in analyses:
            for weakness in analysis.weaknesses:
                if weakness not in weaknesses:
                    weaknesses.append(weakness)
        if not weaknesses:
            return []

        prompt = (
            f"You are an expert biology tutor. A Class {class_num} student has these weaknesses:\n- "
            + "\n- ".join(weaknesses)
            + f"\nBased *only* on these, suggest up to 3 specific practice topics in {language_name(lang)}. "
            'Return a valid JSON array of objects. Each object must have "chapter", "topic", and "reason" keys.'
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Practice Set Suggestion",
            providers,
            self._work_factory(
                prompt,
                lambda raw: validate_list(parse_json_payload(raw), PracticeSuggestion),
                response_schema=PRACTICE_SUGGESTIONS_SCHEMA,
                primary_model=self.settings.gemini_pro_model,
            ),
            token,
        )

    async def suggest_diagrams(
        self,
        chapter: str,
        class_num: int,
        lang: str,
        *,
        primary_credential: Optional[str] = None,
        secondary_credential: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[DiagramSuggestion]:
        """The three most important diagrams of a chapter, with image prompts."""
        prompt = (
            f'List the 3 most important diagrams for Class {class_num} studying "{chapter}" in '
            f"{language_name(lang)}. For each, provide its name, description, and an image "
            'generation prompt. Return a valid JSON array of objects with "name", '
            '"description", and "image_prompt" keys.'
        )
        providers = self._providers(primary_credential, secondary_credential)
        return await self._run(
            "Diagram Suggestion",
            providers,
            self._work_factory(
                prompt,
                lambda raw: validate_list(parse_json_payload(raw), DiagramSuggestion, allow_empty=False),
                response_schema=DIAGRAM_SUGGESTIONS_SCHEMA,
                primary_model=self.settings.gemini_pro_model,
            ),
            token,
        )


_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Process-wide service; built from settings on first use."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService(get_settings())
    return _ai_service


def set_ai_service(service: Optional[AIService]) -> None:
    """Install (or clear, with None) the process-wide service."""
    global _ai_service
    _ai_service = service

from decohere_v1.constraints import ComponentSpec, collect_constraints
from decohere_v1.orchestrator.results import Ok, Retry
from decohere_v1.prompts import (
    GENERALIZE_FEEDBACK,
    INFEASIBLE_SENTINEL,
    PromptContext,
    build_heuristic_library_snippet,
    build_request,
    build_system_prompt,
)
from decohere_v1.responses import (
    format_oracle_response,
    is_infeasible,
    parse_oracle_response,
    strip_code_fences,
    validate_oracle_payload,
)
from decohere_v1.schemas import HelperRegistryEntry, HeuristicDefinition


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"value": 1}\n```') == '{"value": 1}'
    assert strip_code_fences('```\n{"value": 1}\n```') == '{"value": 1}'
    assert strip_code_fences('  {"value": 1}  ') == '{"value": 1}'


def test_parse_fenced_response() -> None:
    content = (
        "```json\n"
        '{"value": 12, "heuristics": [{"name": "even", "description": "Even", '
        '"predicate": "lambda x: x % 2 == 0"}], "explanation": "ok"}\n'
        "```"
    )
    result = parse_oracle_response(content)
    assert isinstance(result, Ok)
    assert result.value.value == 12
    assert result.value.heuristics[0].name == "even"


def test_parse_accepts_null_value() -> None:
    result = parse_oracle_response('{"value": null, "explanation": "__INFEASIBLE__"}')
    assert isinstance(result, Ok)
    assert result.value.value is None
    assert is_infeasible(result.value)


def test_parse_rejects_invalid_json() -> None:
    result = parse_oracle_response("not json at all")
    assert isinstance(result, Retry)
    assert result.reason == "parse_error"
    assert result.errors == ("Response is not valid JSON",)


def test_parse_rejects_non_object() -> None:
    result = parse_oracle_response("[1, 2, 3]")
    assert isinstance(result, Retry)
    assert result.reason == "parse_error"


def test_parse_rejects_missing_value() -> None:
    result = parse_oracle_response('{"heuristics": []}')
    assert isinstance(result, Retry)
    assert result.reason == "invalid_response"
    assert "Response missing required 'value' field" in result.errors


def test_payload_validation_messages() -> None:
    errors = validate_oracle_payload(
        {
            "value": 1,
            "heuristics": [{"name": "x", "description": ""}],
            "candidateValidators": [{"name": "c"}],
            "explanation": 3,
        }
    )
    assert errors == [
        "Heuristic missing required fields (name, description, predicate)",
        "Candidate validator missing required 'predicate' field",
        "'explanation' must be a string",
    ]


def test_format_oracle_response() -> None:
    result = parse_oracle_response('{"value": [1, 2], "explanation": "pairs"}')
    assert isinstance(result, Ok)
    text = format_oracle_response(result.value)
    assert text.startswith("Value: [1,2]")
    assert "Explanation: pairs" in text


def test_system_prompt_mentions_sentinel_and_helpers() -> None:
    prompt = build_system_prompt()
    assert INFEASIBLE_SENTINEL in prompt
    assert "helper functions" not in prompt
    assert "helper functions" in build_system_prompt(include_helpers=True)


def test_request_includes_constraints_feedback_and_helpers() -> None:
    spec = collect_constraints(
        [
            ComponentSpec(name="Even", kind="examples", examples=[2, 4]),
            ComponentSpec(name="Tone", kind="description", description="Prefer round numbers"),
        ]
    )
    helper = HelperRegistryEntry(
        id="h1",
        name="roundTo",
        description="Rounds numbers",
        category="transformer",
        source="lambda x: round(x)",
        signature="(x) -> int",
        input_types=["number"],
        output_type="number",
    )
    request = build_request(
        PromptContext(
            type_text="Even",
            context="type Even = number",
            summary="Value must be even",
            must_constraints=spec.must,
            suggested_patterns=spec.suggested,
            heuristics_library=build_heuristic_library_snippet(
                [HeuristicDefinition(name="even", description="Even", predicate="x % 2 === 0")]
            ),
            attempt=2,
            feedback=GENERALIZE_FEEDBACK,
            available_helpers=[helper],
            available_predicate_patterns=["even (abc): x % 2 === 0"],
        )
    )
    assert "helper functions" in request.system_instruction
    user = request.user_prompt
    assert "Attempt: 2" in user
    assert "- Value must be even" in user
    assert "- Prefer round numbers" in user
    assert "# even: Even" in user
    assert "roundTo (transformer)" in user
    assert "Previously discovered patterns:" in user
    assert f"Previous feedback: {GENERALIZE_FEEDBACK}" in user
    assert user.endswith("Respond with JSON only.")

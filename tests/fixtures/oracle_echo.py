#!/usr/bin/env python3
import json
import sys


def _json_dumps(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def main() -> int:
    payload = json.load(sys.stdin)
    identity = payload.get("identity", "")
    attempt = payload.get("attempt", 0)
    if identity == "Broken":
        sys.stderr.write("oracle failure\n")
        return 3
    if identity == "Silent":
        return 0
    prompt = (payload.get("request") or {}).get("userPrompt", "")
    value = 12 if "Value must be even" in prompt else attempt
    result = {
        "value": value,
        "heuristics": [
            {
                "name": "divisibleByTwo",
                "description": "Divisible by two",
                "predicate": "lambda x: x % 2 == 0",
            }
        ],
        "explanation": f"echo attempt {attempt}",
    }
    sys.stdout.write(_json_dumps(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

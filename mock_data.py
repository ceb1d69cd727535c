"""Mock responses for running without API calls."""

# Shape of a real file review response, including the usual markdown wrapper
MOCK_RESPONSE = """```json
{
  "source_file_info": {"name": "mock.py", "relative_path": "mock.py"},
  "summary": "Division by len(numbers) raises ZeroDivisionError for an empty list.",
  "file_rag_status": "Amber",
  "security_issues": [],
  "errors": [
    {
      "code": "3: return total / len(numbers)",
      "issue": "ZeroDivisionError when the list is empty.",
      "resolution": "Return 0 or raise ValueError when numbers is empty."
    }
  ],
  "improvements": [
    {
      "code": "1: def calculate_average(numbers):",
      "suggestion": "Add type hints to the public function.",
      "improvement_details": "def calculate_average(numbers: list[float]) -> float:"
    }
  ]
}
```"""

MOCK_SUMMARY = (
    "Mock review: files contain unguarded divisions and missing type hints; "
    "no security issues were reported."
)

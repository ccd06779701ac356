"""
Pydantic schemas for request/response validation.

- questions: tagged question content, answer payloads and student views
- exam: request and response bodies of the test-taking and grading endpoints
"""

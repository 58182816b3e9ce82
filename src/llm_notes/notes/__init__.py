"""LLM note generation -- models, prompts, model client, parsing and the pipeline.

Provides SQLAlchemy models (NoteModel, NoteAssignmentModel, NotePromptModel),
Pydantic schemas (PromptSettings, GeneratedNote, GenerationResult), the
Responses API ModelClient, tolerant JSON output parsing, citation resolution,
quota reservation, status tracking, NoteRepository and
NoteGenerationPipeline.
"""

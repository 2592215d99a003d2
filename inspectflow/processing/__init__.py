"""
Processing pipeline for goods-inspection documents.

Modules
-------
config       – Pipeline-specific settings (chunk sizes, vector dims, OCR thresholds …)
schemas      – Pydantic models for OCRResult, LayoutResult, ExtractedData, jobs, responses
exceptions   – ProcessingError hierarchy (input, configuration, stage, job state)
pdf_parser   – PDF text-layer extraction and page rendering (PyMuPDF)
ocr          – Text / PDF / image → text blocks with bounding boxes (EasyOCR fallback)
layout       – Sections, pipe-delimited tables and key-value pairs
json_salvage – Strict-then-balanced-braces JSON parsing of model output
extraction   – Chat-completion field extraction + summary
chunker      – Sentence-greedy chunking for embeddings
embeddings   – OpenAI embeddings or local sentence-transformers
vectordb     – Qdrant (REST) or ChromaDB storage of chunk vectors
validation   – Required-field and format rules
steps        – Per-run step state machine
pipeline     – End-to-end orchestrator wiring everything together
"""

"""
ComfyUI Character DNA Prompt Suite
──────────────────────────────────
Register the Character DNA nodes with ComfyUI.

Nodes:
  🧬  DNA Image Analyzer    – Images → metadata JSON, description, MJ prompt
  📝  DNA Prompt Compiler   – Metadata JSON → Universal / SD‑MJ prompt
  🔒  DNA Identity Lock     – Identity clause + drift negatives
  🖼️  DNA Locked ImgGen     – Identity‑locked image generation
"""

from .gemini_nodes import (
    DNA_Identity_Lock,
    DNA_Image_Analyzer,
    DNA_Locked_ImgGen,
    DNA_Prompt_Compiler,
)

NODE_CLASS_MAPPINGS = {
    "DNA_Image_Analyzer": DNA_Image_Analyzer,
    "DNA_Prompt_Compiler": DNA_Prompt_Compiler,
    "DNA_Identity_Lock": DNA_Identity_Lock,
    "DNA_Locked_ImgGen": DNA_Locked_ImgGen,
}

NODE_DISPLAY_NAME_MAPPINGS = {
    "DNA_Image_Analyzer": "🧬 Character DNA Image Analyzer",
    "DNA_Prompt_Compiler": "📝 Character DNA Prompt Compiler",
    "DNA_Identity_Lock": "🔒 Character DNA Identity Lock",
    "DNA_Locked_ImgGen": "🖼️ Character DNA Locked ImgGen",
}

__all__ = ["NODE_CLASS_MAPPINGS", "NODE_DISPLAY_NAME_MAPPINGS"]

"""
Try-on prompt generation through a Gemini vision model.

The model sees the user photo plus an instruction to write N distinct
image-editing prompts; its free-text answer is split by
``common.services.prompt_parser``.
"""
import concurrent.futures
import logging
import os
from typing import Any, Dict, List, Optional

import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from common.services.prompt_parser import parse_prompts
from common.services.settings import SettingsFileMixin
from common.utils.image_refs import is_data_url, is_remote_url, parse_data_url
from common.utils.validators import clamp_image_count

STYLE_GUIDELINES = """ENHANCED CREATIVE STYLE GUIDELINES (apply with COMPLETE SCENE TRANSFORMATION):
- Fashion Editorial: high-art studio environments with dramatic chiaroscuro lighting, avant-garde poses, textured backgrounds with depth
- Studio Professional: sophisticated studio settings with professional lighting setups, creative backdrop combinations, artistic shadow play
- Cinematic: film-noir environments with dramatic depth of field, storytelling composition, atmospheric backgrounds with mood and emotion
- Street Style: dynamic urban environments with graffiti backgrounds, candid yet artistic poses, vibrant street photography settings
- Vintage/Retro: period-appropriate environments with film grain, vintage color grading, nostalgic yet modern compositions
- Minimalist: clean studio environments with negative space, sophisticated lighting, artistic simplicity with maximum impact
- Formal/Elegant: elegant architectural environments with refined lighting and luxury aesthetic settings
- Casual Everyday: natural everyday environments, relaxed but photogenic poses, lifestyle photography locations
- Professional: corporate environments with sophisticated lighting and visually striking office or studio compositions"""

ENHANCEMENT_TECHNIQUES = """CREATIVE ENHANCEMENT TECHNIQUES TO INCLUDE:
- Advanced lighting techniques (rim lighting, backlighting, creative shadows)
- Artistic composition rules (rule of thirds, leading lines, creative framing)
- Dynamic pose variations (movement, emotion, artistic expression)
- Creative background elements (textures, patterns, artistic environments)
- Color theory applications (complementary colors, artistic color grading)
- Depth of field artistry (selective focus, bokeh effects, creative blur)
- Mood and atmosphere creation (emotional lighting, artistic ambiance)"""


class PromptGenerationService(SettingsFileMixin):
    """
    Gemini 提示詞生成服務：
    - 以使用者照片與風格要求呼叫 GEMINI_LLM
    - 將自由文字回覆切分為指定數量的提示詞
    - 失敗時回傳 {"status": "error"}，不拋出例外
    """

    DEFAULT_LLM = "gemini-2.5-flash"
    TEMPERATURE = 0.9
    IMAGE_FETCH_TIMEOUT = 15

    def __init__(self, settings_json_path: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.logger = logging.getLogger(__name__)

        self.api_key: Optional[str] = None
        self.llm_name: str = self.DEFAULT_LLM
        self.max_output_tokens: int = 4096
        self.client: Optional[Any] = None  # genai.Client when initialized
        self.timeout = float(timeout or os.getenv("GEMINI_LLM_TIMEOUT", "60") or "60")

        self._load_settings(settings_json_path)

    def _load_settings(self, settings_json_path: Optional[str] = None) -> None:
        settings = self._read_settings(settings_json_path)
        self.api_key = self._setting(settings, "GEMINI_API_KEY")
        self.llm_name = self._setting(settings, "GEMINI_LLM", self.DEFAULT_LLM)
        self.max_output_tokens = int(self._setting(settings, "GEMINI_MAX_OUTPUT_TOKENS", "4096"))
        self._init_client()

    def _init_client(self) -> None:
        if not self.api_key:
            self.logger.warning("[PromptGenerationService] No API key found in settings or environment")
            self.client = None
            return
        try:
            self.client = genai.Client(api_key=self.api_key)
            self.logger.info("[PromptGenerationService] Client initialized, model=%s", self.llm_name)
        except Exception as exc:
            self.logger.exception("[PromptGenerationService] Failed to initialize Gemini client: %s", exc)
            self.client = None

    def _reload_settings_if_changed(self) -> None:
        data = self._changed_settings()
        if data is None:
            return
        old_key, old_llm = self.api_key, self.llm_name
        self.api_key = data.get("GEMINI_API_KEY") or self.api_key
        self.llm_name = data.get("GEMINI_LLM") or self.llm_name
        if (self.api_key != old_key) or (self.llm_name != old_llm):
            self._init_client()

    def is_configured(self) -> bool:
        return self.client is not None

    # Public API -----------------------------------------------------------------

    def generate_prompts(
        self,
        *,
        style: str,
        image_count: int,
        user_image: Optional[str],
        clothing_images: Optional[List[str]] = None,
        custom_details: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._reload_settings_if_changed()
        num_images = clamp_image_count(image_count)

        if not self.client:
            return {"status": "error", "error_type": "auth", "message": "Gemini API key not configured"}

        parts = [genai_types.Part.from_text(text=self._build_user_prompt(
            style, num_images, len(clothing_images or []), custom_details
        ))]
        if user_image:
            try:
                parts.append(self._image_part(user_image))
            except (ValueError, requests.RequestException) as exc:
                return {"status": "error", "error_type": "invalid_input", "message": f"Invalid user image: {exc}"}

        contents = [genai_types.Content(role="user", parts=parts)]
        config = genai_types.GenerateContentConfig(
            system_instruction=self._build_system_prompt(num_images),
            temperature=self.TEMPERATURE,
            max_output_tokens=self.max_output_tokens,
        )

        self.logger.info("[PromptGenerationService] Generating %d prompt(s) for style=%s", num_images, style)
        result = self._call_llm(contents, config)
        if result.get("status") == "error":
            return result

        prompt_text = (self._extract_text_from_sdk(result["response"]) or "").strip()
        self.logger.debug("[PromptGenerationService] Generated prompts: %s", prompt_text)

        parsed = parse_prompts(prompt_text, num_images)
        return {
            "status": "ok",
            "prompts": parsed.prompts,
            "full_response": prompt_text,
            "shortfall": parsed.shortfall,
            "synthesized": parsed.synthesized_count,
        }

    def test_connection(self) -> Dict[str, Any]:
        self._reload_settings_if_changed()
        if not self.client:
            return {"status": "error", "error_type": "auth", "message": "Gemini API key not configured"}
        result = self._call_llm("Say 'Gemini API is working!' and nothing else.", None)
        if result.get("status") == "error":
            return result
        text = (self._extract_text_from_sdk(result["response"]) or "").strip()
        self.logger.info("[PromptGenerationService] Test response: %s", text)
        return {"status": "ok", "response": text}

    # Internal helpers ------------------------------------------------------------

    def _call_llm(self, contents: Any, config: Optional[Any]) -> Dict[str, Any]:
        """Call generate_content under a timeout guard to avoid blocking the worker."""
        ex = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            fut = ex.submit(
                self.client.models.generate_content,  # type: ignore[union-attr]
                model=self.llm_name,
                contents=contents,
                config=config,
            )
            return {"status": "ok", "response": fut.result(timeout=self.timeout)}
        except concurrent.futures.TimeoutError:
            self.logger.error("[PromptGenerationService] API call TIMEOUT after %ss", self.timeout)
            return {"status": "error", "error_type": "timeout", "message": f"Gemini request timed out after {self.timeout:g}s"}
        except genai_errors.APIError as exc:
            self.logger.error("[PromptGenerationService] API error %s: %s", exc.code, exc.message)
            return {"status": "error", "error_type": self._classify_api_error(exc.code), "message": str(exc)}
        except OSError as exc:
            self.logger.error("[PromptGenerationService] API call NETWORK ERROR: %s", type(exc).__name__)
            return {"status": "error", "error_type": "network", "message": f"{type(exc).__name__}: {exc}"}
        except Exception as exc:
            self.logger.exception("[PromptGenerationService] Exception: %s", exc)
            return {"status": "error", "error_type": "upstream", "message": f"{type(exc).__name__}: {exc}"}
        finally:
            ex.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _classify_api_error(code: Optional[int]) -> str:
        if code in (401, 403):
            return "auth"
        if code == 429:
            return "rate_limit"
        return "upstream"

    def _image_part(self, image_ref: str) -> Any:
        if is_data_url(image_ref):
            mime_type, image_bytes = parse_data_url(image_ref)
        elif is_remote_url(image_ref):
            response = requests.get(image_ref, timeout=self.IMAGE_FETCH_TIMEOUT)
            response.raise_for_status()
            mime_type = (response.headers.get("Content-Type") or "image/jpeg").split(";")[0].strip()
            image_bytes = response.content
        else:
            raise ValueError("expected a data URL or an http(s) URL")
        if not image_bytes:
            raise ValueError("image payload is empty")
        return genai_types.Part.from_bytes(data=image_bytes, mime_type=mime_type)

    @staticmethod
    def _extract_text_from_sdk(response: Any) -> Optional[str]:
        """嘗試從 SDK 回應擷取文字內容。"""
        candidates = getattr(response, "candidates", None) or []
        texts = []
        for c in candidates:
            content = getattr(c, "content", None)
            if not content:
                continue
            for p in getattr(content, "parts", None) or []:
                if getattr(p, "thought", False):
                    continue
                txt = getattr(p, "text", None)
                if isinstance(txt, str) and txt.strip():
                    texts.append(txt.strip())
        return "\n".join(texts) if texts else None

    @staticmethod
    def _build_system_prompt(num_images: int) -> str:
        return (
            f"You are a master AI image editing artist and creative director specializing in virtual clothing "
            f"try-on. Your expertise lies in creating {num_images} UNIQUE, ARTISTIC, and CREATIVELY STUNNING prompts "
            f"that transform ordinary clothing swaps into extraordinary visual masterpieces.\n\n"
            f"CRITICAL CREATIVE REQUIREMENTS:\n"
            f"1. Generate {num_images} DISTINCTIVELY UNIQUE and ARTISTICALLY VARIED prompts\n"
            f"2. Each prompt must REPLACE the person's current clothing with the SPECIFIC UPLOADED CLOTHING ITEMS\n"
            f"3. PRESERVE ONLY the person's face and body - EVERYTHING ELSE CAN CHANGE (background, setting, "
            f"environment, lighting, atmosphere)\n"
            f"4. COMPLETELY TRANSFORM the scene according to the selected photography style\n"
            f"5. ALWAYS reference the uploaded clothing items as the exact items to be worn\n"
            f"6. CHANGE THE BACKGROUND COMPLETELY - create new environments that match the selected style\n"
            f"7. DO NOT describe what the clothing looks like - simply instruct to replace with the uploaded "
            f"clothing items\n\n"
            f"{STYLE_GUIDELINES}\n\n{ENHANCEMENT_TECHNIQUES}\n\n"
            f"FORMAT: write each prompt under its own heading line \"Prompt N:\" (N = 1..{num_images}). "
            f"Each prompt must be one self-contained paragraph."
        )

    @staticmethod
    def _build_user_prompt(style: str, num_images: int, clothing_count: int, custom_details: Optional[str]) -> str:
        if clothing_count > 0:
            clothing_description = (
                f"\nCLOTHING ITEMS TO TRY ON:\nThe user has uploaded {clothing_count} clothing item(s) that they "
                f"want to try on. These are the EXACT clothing items that must be worn in the generated images. "
                f"DO NOT describe what the clothing looks like - simply instruct the AI to replace the person's "
                f"current clothing with the uploaded clothing items."
            )
        else:
            clothing_description = (
                "\nCLOTHING ITEMS: The user will provide clothing images separately. Focus on creating artistic "
                "prompts for clothing replacement."
            )
        details = f"\nAdditional Creative Details: {custom_details}" if custom_details else ""

        return (
            f"Create {num_images} UNIQUE ARTISTIC prompts for AI image editing to perform virtual clothing try-on "
            f"with CREATIVE VISUAL ENHANCEMENT.\n\n"
            f"Style: {style}\n"
            f"Number of unique artistic prompts needed: {num_images}{clothing_description}{details}\n\n"
            f"Each prompt should instruct the AI to:\n"
            f"- Remove the person's current clothing and replace it with the SPECIFIC UPLOADED CLOTHING ITEMS\n"
            f"- Maintain ONLY the person's face and body appearance unchanged - EVERYTHING ELSE MUST CHANGE\n"
            f"- COMPLETELY CHANGE the background and setting to match {style} photography style\n"
            f"- Use creative pose variations with emotional expression and dynamic movement\n"
            f"- Apply advanced {style} lighting techniques (rim lighting, dramatic shadows, creative illumination)\n"
            f"- Include artistic composition (rule of thirds, leading lines, creative framing, depth of field)\n"
            f"- Create mood and atmosphere through lighting, color grading and artistic ambiance\n\n"
            f"Generate {num_images} UNIQUE ARTISTIC prompts, each in a completely different setting that matches "
            f"the selected style. Do not preserve the original background or environment."
        )

from __future__ import annotations

from studio.models import GenerationContext

_RESPONSE_SHAPE_HINT = """
Response Format:
Return your response in the following JSON format:
{
  "jsx": "// Your JSX/TSX component code here",
  "css": "/* Your CSS styles here */",
  "explanation": "Brief explanation of the component",
  "features": ["list", "of", "key", "features"],
  "props": {
    "propName": "description"
  }
}

Make sure the JSON is valid and the code is production-ready.
Escape newlines and quotes inside the code strings. No text outside the JSON object.
"""

_STYLE_NOTES = {
    "css": "Write plain CSS in the css field and reference it with className.",
    "tailwind": "Use Tailwind CSS utility classes in the markup; keep the css field for anything utilities cannot express.",
    "styled-components": "Use styled-components for styling; put any global styles in the css field.",
    "emotion": "Use Emotion (css prop or styled) for styling; put any global styles in the css field.",
}

_FRAMEWORK_NOTES = {
    "react": "Follow React best practices and hooks. Export the component as the default export.",
    "vue": "Write a Vue 3 single-file-component style definition using the Composition API.",
    "angular": "Write an Angular standalone component with an inline template.",
}


def build_system_prompt(context: GenerationContext) -> str:
    language = "TypeScript" if context.typescript else "JavaScript"
    return f"""You are an expert frontend developer specializing in {context.framework} components.
Your task is to generate clean, modern, and functional components based on user requests.

Guidelines:
1. Always return BOTH JSX/TSX code AND CSS code
2. Use {language} syntax
3. {_FRAMEWORK_NOTES.get(context.framework, _FRAMEWORK_NOTES["react"])}
4. Create responsive, accessible components
5. Use {context.styleFramework} for styling. {_STYLE_NOTES.get(context.styleFramework, "")}
6. Include proper component structure with props and state when needed
7. Add comments for complex logic
8. Ensure the component is self-contained and ready to use
{_RESPONSE_SHAPE_HINT}"""


def build_user_prompt(prompt: str, context: GenerationContext) -> str:
    if context.iterating:
        existing = context.existingCode
        return f"""Current component code:
JSX: {existing.jsx}
CSS: {existing.css}

User request for modification: {prompt}

Please modify the existing component according to the user's request. Keep the existing structure where possible and only change what's necessary."""

    return f"""Create a {context.framework.capitalize()} component based on this request: {prompt}

Please ensure the component is:
- Modern and visually appealing
- Responsive across different screen sizes
- Accessible (proper ARIA labels, semantic HTML)
- Well-structured and reusable
- Includes proper styling with {context.styleFramework}"""


def variation_prompt(prompt: str, index: int) -> str:
    return f"{prompt} (Variation {index}: Create a different design approach)"

"""
Canned replies served when every provider call has failed.
"""

from typing import Any, Dict

SIMULATED_PROVIDER = "simulated"

REACT_EXAMPLE = """I can help you build a functional React component:

```jsx
import React, { useState, useEffect } from 'react';

const InteractiveCard = () => {
  const [count, setCount] = useState(0);
  const [isActive, setIsActive] = useState(false);

  useEffect(() => {
    if (!isActive) return undefined;
    const interval = setInterval(() => setCount(prev => prev + 1), 1000);
    return () => clearInterval(interval);
  }, [isActive]);

  return (
    <div style={{ maxWidth: '400px', margin: '20px auto', padding: '30px',
                  borderRadius: '20px', textAlign: 'center' }}>
      <h2>Interactive component</h2>
      <div style={{ fontSize: '48px', fontWeight: 'bold' }}>{count}</div>
      <button onClick={() => setIsActive(!isActive)}>
        {isActive ? 'Pause' : 'Start'}
      </button>
      <button onClick={() => setCount(0)}>Reset</button>
      <p>Status: {isActive ? 'running' : 'paused'}</p>
    </div>
  );
};

const App = InteractiveCard;
export default App;
```

**What it shows:**

- **useState** keeps the counter and the running flag
- **useEffect** drives the interval and cleans it up
- Inline styles keep the example self-contained
"""

HTML_EXAMPLE = """Here is a modern HTML page with a small animation:

```html
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Modern page</title>
  <style>
    body { font-family: system-ui, sans-serif; min-height: 100vh; display: flex;
           align-items: center; justify-content: center;
           background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); }
    .container { background: rgba(255, 255, 255, 0.95); padding: 40px; border-radius: 20px;
                 max-width: 500px; text-align: center; animation: slideUp 0.8s ease-out; }
    @keyframes slideUp { from { opacity: 0; transform: translateY(50px); }
                         to { opacity: 1; transform: translateY(0); } }
    .btn { border: none; padding: 12px 24px; border-radius: 25px; cursor: pointer; }
  </style>
</head>
<body>
  <div class="container">
    <h1>Modern page</h1>
    <p>Responsive layout with a CSS entrance animation.</p>
    <button class="btn">Try it</button>
  </div>
  <script>
    document.querySelector('.btn').addEventListener('click', function () {
      this.textContent = 'Clicked!';
    });
  </script>
</body>
</html>
```

**What it shows:**

- A centred card with a gradient background
- A keyframe animation on load
- A click handler written in plain JavaScript
"""

GENERIC_TEMPLATE = """Let me help with: **"{input}"**

## Breaking it down

1. Identify the key components of the problem.
2. List the concrete requirements.
3. Define the expected result.

## Suggested approach

- Start with the simplest solution that works.
- Test each part on its own.
- Iterate and improve gradually.

Would you like me to go deeper into any part of your question?

---
*Note: {provider} is not available, this is a simulated response.*"""


def generate_fallback_response(user_input: str, provider: str = "the AI service") -> Dict[str, Any]:
    """Pick a canned reply by keyword; the shape matches a normal AI response."""
    lower = (user_input or "").lower()

    if "react" in lower or "component" in lower:
        content, model = REACT_EXAMPLE, "fallback-react"
    elif "html" in lower or "page" in lower:
        content, model = HTML_EXAMPLE, "fallback-html"
    else:
        content = GENERIC_TEMPLATE.format(input=user_input, provider=provider)
        model = "fallback-generic"

    return {
        "content": content,
        "model": model,
        "provider": SIMULATED_PROVIDER,
        "usage": None,
        "token_count": None,
        "simulated": True,
    }

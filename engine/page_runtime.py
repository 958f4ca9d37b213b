"""
In-page interpreter for compiled workflow scripts.

PAGE_RUNTIME_JS is a fixed function; the compiled steps travel as its
single structured argument (page.evaluate(PAGE_RUNTIME_JS, payload)), so
values are never spliced into script text.
"""

PAGE_RUNTIME_JS = r"""
async (payload) => {
  const timing = payload.timing || {};
  const pollMs = timing.poll_ms ?? 100;
  const timeoutMs = timing.timeout_ms ?? 5000;
  const typeDelayMs = timing.type_delay_ms ?? 50;

  const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
  const fire = (el, type) => el.dispatchEvent(new Event(type, { bubbles: true }));
  const asText = (v) => (v === null || v === undefined ? '' : String(v));

  const waitForElement = async (selector) => {
    const start = Date.now();
    while (true) {
      const el = document.querySelector(selector);
      if (el) return el;
      if (Date.now() - start >= timeoutMs) return null;
      await sleep(pollMs);
    }
  };

  const input = async (el, mode, value) => {
    const text = asText(value);
    if (mode === 'type') {
      el.focus();
      el.value = '';
      for (const ch of text) {
        let inserted = false;
        try { inserted = document.execCommand('insertText', false, ch); } catch {}
        if (!inserted) {
          el.value += ch;
          fire(el, 'input');
        }
        await sleep(typeDelayMs);
      }
      fire(el, 'change');
    } else if (mode === 'inner_text') {
      el.innerText = text;
      fire(el, 'input');
    } else {
      el.value = text;
      fire(el, 'input');
      fire(el, 'change');
    }
  };

  const select = (el, mode, value) => {
    if (mode === 'text') {
      const option = Array.from(el.options || []).find((opt) => opt.text === asText(value));
      if (option) el.value = option.value;
    } else if (mode === 'index') {
      const idx = parseInt(asText(value), 10);
      if (!Number.isNaN(idx) && el.options && el.options[idx]) el.selectedIndex = idx;
    } else {
      el.value = asText(value);
    }
    fire(el, 'change');
  };

  const upload = (el, files) => {
    const transfer = new DataTransfer();
    for (const f of files || []) {
      const raw = atob(f.data);
      const bytes = new Uint8Array(raw.length);
      for (let i = 0; i < raw.length; i++) bytes[i] = raw.charCodeAt(i);
      transfer.items.add(new File([bytes], f.name, { type: f.mime }));
    }
    el.files = transfer.files;
    fire(el, 'input');
    fire(el, 'change');
  };

  const report = { steps: 0, actions: [] };
  console.log('Starting workflow execution...', payload.steps.length, 'steps');

  for (const step of payload.steps) {
    report.steps += 1;
    const actions = step.actions || [];
    for (let index = 0; index < actions.length; index++) {
      const action = actions[index];
      const entry = { step: step.id, index, selector: action.selector, status: 'ok' };
      try {
        if (action.delay) await sleep(action.delay);
        const el = await waitForElement(action.selector);
        if (!el) {
          console.warn('Element not found:', action.selector);
          entry.status = 'not_found';
          report.actions.push(entry);
          continue;
        }
        switch (action.type) {
          case 'input':
            await input(el, action.mode, step.value);
            break;
          case 'click':
            el.click();
            break;
          case 'select':
            select(el, action.mode, step.value);
            break;
          case 'date':
            el.value = asText(step.value);
            fire(el, 'input');
            fire(el, 'change');
            break;
          case 'upload':
            upload(el, action.files);
            break;
          default:
            entry.status = 'skipped';
        }
      } catch (err) {
        console.error('Error in action:', action.selector, err);
        entry.status = 'error';
        entry.error = String((err && err.message) || err);
      }
      report.actions.push(entry);
    }
  }

  console.log('Workflow execution completed.');
  return report;
}
"""
